from pathlib import Path

import pytest

from linkguard.core.errors import CircularDependencyError, ConfigError, UnknownDependencyError
from linkguard.core.graph.loader import load_plan, parse_description, plan_from_description
from linkguard.core.policy import Configuration, RuntimeMode

DESCRIPTION = """
policy:
  runtime: Static
  configuration: Release
workers: 3
nodes:
  - id: zlib
    source: deps/zlib
    command: ["cmake", "--build", "{output_dir}"]
    artifacts: ["{output_dir}/zlib.lib"]
  - id: png
    source: deps/libpng
    depends_on: [zlib, zlib]
    command: "build.cmd {runtime_flag} --name 'lib png'"
    artifacts: ["{output_dir}/png.lib"]
    output_dir: build/x64
overrides:
  - node: png
    configuration: debug
    reconciles: [zlib]
groups:
  - name: imaging
    output: dist/imaging.lib
    members: [zlib, png]
"""


def test_load_plan_from_yaml(tmp_path: Path):
    p = tmp_path / "build.yaml"
    p.write_text(DESCRIPTION, encoding="utf-8")
    plan = load_plan(p)

    assert plan.policy.runtime == RuntimeMode.STATIC
    assert plan.policy.overrides["png"].configuration == Configuration.DEBUG
    assert plan.policy.overrides["png"].reconciles == frozenset({"zlib"})
    assert plan.description.workers == 3

    png = plan.graph.get("png")
    assert png.source_dir == tmp_path / "deps" / "libpng"
    assert png.depends_on == ["zlib"]
    assert png.command == ["build.cmd", "{runtime_flag}", "--name", "lib png"]
    assert png.output_path == tmp_path / "deps" / "libpng" / "build" / "x64"

    assert plan.graph.topological_sort() == ["zlib", "png"]
    assert plan.groups[0].output == tmp_path / "dist" / "imaging.lib"
    assert plan.groups[0].members == ("zlib", "png")


def test_json_is_accepted(tmp_path: Path):
    p = tmp_path / "build.json"
    p.write_text('{"nodes": [{"id": "a", "source": "a", "command": ["make"]}]}', encoding="utf-8")
    plan = load_plan(p)
    assert list(plan.graph.nodes) == ["a"]
    assert plan.policy.label == "MT_StaticRelease"


def test_unknown_field_is_config_error():
    with pytest.raises(ConfigError) as ei:
        parse_description({"nodes": [{"id": "a", "source": "a", "flavour": "x"}]})
    assert ei.value.details["errors"][0]["loc"] == "nodes.0.flavour"


def test_node_id_with_path_separator_is_config_error():
    for bad in ("vendor/zlib", "../x", "..\\x"):
        with pytest.raises(ConfigError) as ei:
            parse_description({"nodes": [{"id": bad, "source": "a"}]})
        assert ei.value.details["errors"][0]["loc"] == "nodes.0.id"


def test_output_dir_must_stay_inside_source():
    for bad in ("../out", "/tmp/out", "."):
        with pytest.raises(ConfigError):
            parse_description({"nodes": [{"id": "a", "source": "a", "output_dir": bad}]})


def test_unknown_runtime_is_config_error(tmp_path: Path):
    desc = parse_description({"policy": {"runtime": "Hybrid"}})
    with pytest.raises(ConfigError):
        plan_from_description(desc, base_dir=tmp_path)


def test_duplicate_override_is_config_error(tmp_path: Path):
    desc = parse_description(
        {
            "nodes": [{"id": "a", "source": "a"}],
            "overrides": [{"node": "a", "runtime": "Dynamic"}, {"node": "a", "configuration": "Debug"}],
        }
    )
    with pytest.raises(ConfigError):
        plan_from_description(desc, base_dir=tmp_path)


def test_cycle_and_unknown_edge_are_rejected(tmp_path: Path):
    cyc = parse_description(
        {"nodes": [{"id": "a", "source": "a", "depends_on": ["b"]}, {"id": "b", "source": "b", "depends_on": ["a"]}]}
    )
    with pytest.raises(CircularDependencyError):
        plan_from_description(cyc, base_dir=tmp_path)

    dangling = parse_description({"nodes": [{"id": "a", "source": "a", "depends_on": ["ghost"]}]})
    with pytest.raises(UnknownDependencyError):
        plan_from_description(dangling, base_dir=tmp_path)


def test_malformed_or_missing_file(tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("nodes: [\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_plan(bad)
    with pytest.raises(ConfigError):
        load_plan(tmp_path / "missing.yaml")
