import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from guides import custom_workflow_example as example


def test_guide_fails_then_resumes(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(example, "STATE_DIR", tmp_path)
    monkeypatch.setattr(sys, "argv", ["custom_workflow_example.py"])

    example.main()
    out = capsys.readouterr().out
    assert "Order: ['update', 'create_user', 'configure_net', 'permissions', 'cleanup']" in out
    assert "--continue configure_net" in out

    monkeypatch.setattr(sys, "argv", ["custom_workflow_example.py", "--fixed"])
    example.main()
    out = capsys.readouterr().out
    assert "Done: executed ['configure_net', 'permissions', 'cleanup']" in out
