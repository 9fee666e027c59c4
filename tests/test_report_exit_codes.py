from linkguard.core.build.report import ExitCode, GroupReport, NodeReport, RunReport, exit_code_for


def _node(node_id, status, kind=None):
    return NodeReport(node_id=node_id, status=status, error_kind=kind)


def test_exit_code_per_error_kind():
    assert exit_code_for(None) == ExitCode.OK
    assert exit_code_for("CircularDependency") == ExitCode.CONFIG_ERROR
    assert exit_code_for("BuildFailed") == ExitCode.BUILD_FAILED
    assert exit_code_for("UnreadableArtifact") == ExitCode.BUILD_FAILED
    assert exit_code_for("ExceededRetries") == ExitCode.VERIFICATION_FAILED
    assert exit_code_for("DuplicateSymbolError") == ExitCode.CONSOLIDATION_FAILED
    assert exit_code_for("SomethingNew") == ExitCode.BUILD_FAILED


def test_earliest_stage_wins():
    report = RunReport(
        run_id="r",
        nodes={
            "a": _node("a", "Failed", "VerificationFailed"),
            "b": _node("b", "Failed", "BuildFailed"),
            "c": _node("c", "Built"),
        },
        groups={"g": GroupReport(name="g", output="g.lib", status="Failed", error_kind="DuplicateSymbolError")},
    )
    assert report.exit_code == ExitCode.BUILD_FAILED
    assert not report.escalated


def test_blocked_nodes_do_not_set_exit_code_alone():
    report = RunReport(run_id="r", nodes={"a": _node("a", "Built"), "b": _node("b", "Unbuilt", "DependencyFailed")})
    assert report.exit_code == ExitCode.OK


def test_config_error_overrides_everything():
    report = RunReport(run_id="r", config_error={"kind": "ConfigError", "message": "boom"})
    body = report.to_dict()
    assert body["exit_code"] == 2
    assert body["escalated"] is True
    assert body["config_error"]["message"] == "boom"


def test_group_report_carries_remediation():
    gr = GroupReport(name="core", output="core.lib", status="Failed", error_kind="DuplicateSymbolError")
    assert "duplicates are never resolved automatically" in gr.to_dict()["remediation"]
    assert GroupReport(name="core", output="core.lib", status="Skipped").to_dict()["remediation"] is None
