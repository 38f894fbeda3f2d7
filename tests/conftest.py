"""
Shared fixtures for the PPZ Logalyzer test suite.

Sample .log headers and .data files are written into tmp_path so every test
works on real files, the same way the processing pipeline does.
"""
import pytest

from ppz_logalyzer.config.settings import Settings
from ppz_logalyzer.libs.schema_manager import SchemaManager


EFF_MAT_STAB_MESSAGE = """
   <message name="EFF_MAT_STAB" id="42">
    <field name="g1_p" type="float"/>
    <field name="g1_q" type="float"/>
    <field name="g1_r" type="float"/>
   </message>"""

BASE_MESSAGES = """
   <message name="ALIVE" id="2">
    <field name="md5sum" type="uint8[]"/>
   </message>
   <message name="ATTITUDE" id="6">
    <field name="phi" type="float" unit="rad"/>
    <field name="psi" type="float" unit="rad"/>
    <field name="theta" type="float" unit="rad"/>
   </message>
   <message name="GPS_INT" id="155">
    <field name="alt" type="int32" unit="mm"/>
    <field name="fix" type="uint8"/>
   </message>
   <message name="INFO_MSG" id="30">
    <field name="msg" type="char[]"/>
   </message>"""


def make_header(
    ac_id=38,
    version="v6.0",
    name="Microjet",
    messages=BASE_MESSAGES,
    time_of_day="1688386560.5",
    data_file="23_07_03__14_16_00.data",
):
    """Build a .log header; ``messages=None`` leaves the protocol section out."""
    lines = ['<?xml version="1.0"?>']
    if version is not None:
        lines.append(f"<!-- paparazzi_version {version} -->")
        lines.append(f"<!-- build_version {version}_stable-1234 -->")
    lines.append(f'<configuration time_of_day="{time_of_day}" data_file="{data_file}">')
    lines.append(" <conf>")
    lines.append(
        f'  <aircraft name="{name}" ac_id="{ac_id}" airframe="airframes/microjet.xml"'
        ' flight_plan="flight_plans/basic.xml"/>'
    )
    lines.append(" </conf>")
    lines.append(' <firmware name="fixedwing"/>')
    if messages is not None:
        lines.append(" <protocol>")
        lines.append('  <msg_class name="telemetry" id="1">' + messages)
        lines.append("  </msg_class>")
        lines.append('  <msg_class name="ground" id="2">')
        lines.append('   <message name="NEW_AIRCRAFT" id="1"><field name="ac_id" type="string"/></message>')
        lines.append("  </msg_class>")
        lines.append(" </protocol>")
    lines.append("</configuration>")
    return "\n".join(lines) + "\n"


SAMPLE_DATA = """\
12.500 38 ATTITUDE phi=0.1 psi=1.5 theta=-0.05
12.750 38 GPS_INT 152300 3
13.000 38 ALIVE 1,2,3,4
13.250 38 6 0.2 1.6 -0.04
13.500 38 INFO_MSG "takeoff"
"""


@pytest.fixture
def settings():
    return Settings(parsed_cache_ttl_seconds=3600, progress_interval=2)


@pytest.fixture
def schema_manager(settings):
    return SchemaManager(settings)


@pytest.fixture
def write_pair(tmp_path):
    """Write a header/data pair and return their paths."""
    def _write(header=None, data=SAMPLE_DATA, stem="flight"):
        log_path = tmp_path / f"{stem}.log"
        data_path = tmp_path / f"{stem}.data"
        log_path.write_text(make_header() if header is None else header, encoding="utf-8")
        if data is not None:
            data_path.write_text(data, encoding="utf-8")
        return log_path, data_path
    return _write


@pytest.fixture
def sample_pair(write_pair):
    return write_pair()
