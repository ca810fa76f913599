import json

from agent_runtime.policy.policy import Decision, Policy


def test_deny_beats_ask_beats_allow():
    policy = Policy(allow=["*"], ask=["execute_*"], deny=["execute_shell"])

    assert policy.check("execute_shell").decision == Decision.AUTO_DENY
    assert policy.check("execute_python").decision == Decision.REQUIRE_CONFIRMATION
    assert policy.check("write_file").decision == Decision.AUTO_APPROVE
    assert policy.check("execute_shell").matched == "execute_shell"


def test_unmatched_tool_requires_confirmation():
    decision = Policy(allow=["read_*"]).check("write_file")
    assert decision.decision == Decision.REQUIRE_CONFIRMATION
    assert decision.matched is None


def test_presets():
    assert Policy.auto_approve().check("anything").decision == Decision.AUTO_APPROVE
    assert Policy.auto_deny().check("anything").decision == Decision.AUTO_DENY
    assert Policy.require_confirmation().check("anything").decision == Decision.REQUIRE_CONFIRMATION


def test_load_defaults_without_config(tmp_path):
    policy = Policy.load(str(tmp_path / "missing.json"))
    assert policy.ask == ["write_file", "execute_shell"]
    assert policy.allow == [] and policy.deny == []


def test_load_from_config(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"permissions": {"allow": ["write_file"], "deny": ["execute_shell"]}}))

    policy = Policy.load(str(path))

    assert policy.check("write_file").decision == Decision.AUTO_APPROVE
    assert policy.check("execute_shell").decision == Decision.AUTO_DENY


def test_persist_decision_moves_tool_between_lists(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"llm": {"model_name": "x"}, "permissions": {"deny": ["write_file"]}}))

    Policy.persist_decision(tool_name="write_file", decision="allow", path=str(path))

    data = json.loads(path.read_text())
    assert data["llm"] == {"model_name": "x"}
    assert data["permissions"]["allow"] == ["write_file"]
    assert data["permissions"]["deny"] == []
    assert Policy.load(str(path)).check("write_file").decision == Decision.AUTO_APPROVE


def test_persist_decision_ignores_bad_input(tmp_path):
    path = tmp_path / "cfg.json"
    Policy.persist_decision(tool_name="write_file", decision="sometimes", path=str(path))
    assert not path.exists()
