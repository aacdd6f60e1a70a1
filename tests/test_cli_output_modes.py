"""Output-mode rendering tests for CLI payloads."""

from __future__ import annotations

import json

import pytest

from runnel.cli.config_cmd import ConfigShowOutput
from runnel.cli.exec_cmd import ExecReport, PipeReport
from runnel.cli.output import OutputConfig, emit, normalize_output_format
from runnel.lib.process import Output, Status


def _output(stdout: bytes, stderr: bytes, exit_code: int) -> Output:
    status = Status(command="x", pid=10, running=False, exit_code=exit_code)
    return Output.of(stdout, stderr, status)


def test_normalize_output_format() -> None:
    assert normalize_output_format(requested=None, json_mode=False) == "text"
    assert normalize_output_format(requested="JSON", json_mode=False) == "json"
    assert normalize_output_format(requested="text", json_mode=True) == "json"
    with pytest.raises(SystemExit):
        normalize_output_format(requested="porcelain", json_mode=False)


def test_exec_report_json_decodes_streams(capsys: pytest.CaptureFixture[str]) -> None:
    report = ExecReport.from_output(["echo", "hi"], _output(b"hi\n", b"", 0))

    emit(report, OutputConfig(format="json"))

    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "argv": ["echo", "hi"],
        "exit_code": 0,
        "pid": 10,
        "signaled": False,
        "stderr": "",
        "stdout": "hi\n",
    }


def test_pipe_report_joins_stderr_in_stage_order() -> None:
    upstream = _output(b"", b"first\n", 0)
    last = _output(b"done\n", b"last\n", 0)
    output = Output(
        stdout=last.stdout,
        stderr=last.stderr,
        status=last.status,
        upstream=(upstream,),
    )

    report = PipeReport.from_output([["a"], ["b"]], output)

    assert report.stderr == b"first\nlast\n"
    assert report.upstream_exit_codes == (0,)
    assert report.stages == (("a",), ("b",))


def test_config_show_text_lists_values() -> None:
    text = ConfigShowOutput(path="/x/runnel.toml", exists=True, values={"a": 1}).format_text()

    assert text.splitlines() == ["config: /x/runnel.toml", "a = 1"]
