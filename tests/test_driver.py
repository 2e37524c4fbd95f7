"""End-to-end tests for the convergence driver against a fake toolchain."""

from __future__ import annotations

import os

import pytest

from tests._fixtures.document_builder import DocumentBuilder, FakeToolchain, fake_latex, fake_tool
from texloop.auxiliary import AuxiliaryKind, KindState
from texloop.config import TexLoopConfig, ToolConfig
from texloop.driver import BuildFailure, ConvergenceDriver
from texloop.process import ProcessRunner

CITING_AUX = "\\relax\n\\citation{knuth84}\n\\bibstyle{plain}\n\\bibdata{refs}\n"
RERUN_LOG = "LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.\n"


@pytest.fixture
def config(document_builder: DocumentBuilder) -> TexLoopConfig:
    return TexLoopConfig(root=document_builder.path())


@pytest.fixture
def driver(runner: ProcessRunner, config: TexLoopConfig) -> ConvergenceDriver:
    return ConvergenceDriver(runner, config)


def test_plain_document_needs_one_pass(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex())

    outcome = driver.build(descriptor)

    assert outcome.converged
    assert outcome.compiler_runs == 1
    assert all(count == 0 for count in outcome.tool_runs.values())
    assert outcome.diagnostics == ()
    assert outcome.success
    assert outcome.output_file == descriptor.pdf_file
    assert toolchain.calls[0].argv == [
        "pdflatex",
        "-interaction=nonstopmode",
        "-synctex=1",
        "-recorder",
        "doc.tex",
    ]


def test_bibliography_costs_two_extra_passes(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))

    outcome = driver.build(descriptor)

    assert toolchain.tools() == ["pdflatex", "bibtex", "pdflatex", "pdflatex"]
    assert outcome.converged
    assert outcome.compiler_runs == 3
    assert outcome.tool_runs[AuxiliaryKind.BIBLIOGRAPHY] == 1
    assert outcome.diagnostics == ()


def test_table_of_contents_adds_one_pass(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX, files={".toc": "\\contentsline{section}{Intro}{1}\n"}))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))

    outcome = driver.build(descriptor)

    assert outcome.compiler_runs == 4
    assert outcome.converged


def test_new_citation_reruns_bibtex(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()

    def aux(count: int) -> str:
        if count == 1:
            return CITING_AUX
        return CITING_AUX + "\\citation{lamport94}\n"

    toolchain.on("pdflatex", fake_latex(aux=aux))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))

    outcome = driver.build(descriptor)

    assert toolchain.tools() == ["pdflatex", "bibtex", "pdflatex", "bibtex", "pdflatex", "pdflatex"]
    assert outcome.tool_runs[AuxiliaryKind.BIBLIOGRAPHY] == 2
    assert outcome.compiler_runs == 4
    assert outcome.converged


def test_unreadable_aux_still_runs_tools_once(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    descriptor.aux_file.mkdir()
    toolchain.on("pdflatex", fake_latex(write_aux=False))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))
    toolchain.on("makeglossaries", fake_tool(".gls", ".glg"))

    outcome = driver.build(descriptor)

    assert outcome.tool_runs[AuxiliaryKind.BIBLIOGRAPHY] == 1
    assert outcome.tool_runs[AuxiliaryKind.GLOSSARY] == 1
    assert outcome.converged
    assert outcome.compiler_runs == 3
    codes = [entry.code for entry in outcome.diagnostics]
    assert "WFU02" in codes
    assert "WFU01" in codes
    assert outcome.success


def test_rerun_budget_bounds_compiler_passes(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(log=RERUN_LOG))

    outcome = driver.build(descriptor, max_reruns=2)

    assert outcome.compiler_runs == 3
    assert not outcome.converged
    assert [entry.code for entry in outcome.diagnostics if entry.code == "WLP01"] == ["WLP01"]


def test_zero_budget_allows_only_the_first_pass(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))

    outcome = driver.build(descriptor, max_reruns=0)

    assert toolchain.tools() == ["pdflatex", "bibtex"]
    assert outcome.compiler_runs == 1
    assert not outcome.converged


@pytest.mark.parametrize("unbounded", [None, -1])
def test_unbounded_budget_runs_until_quiet(
    unbounded, document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(log=lambda count: RERUN_LOG if count < 8 else "done\n"))

    outcome = driver.build(descriptor, max_reruns=unbounded)

    assert outcome.compiler_runs == 8
    assert outcome.converged


def test_negative_budget_other_than_unbounded_is_rejected(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex())

    with pytest.raises(ValueError, match="max_reruns"):
        driver.build(descriptor, max_reruns=-3)

    assert toolchain.calls == []


def test_two_line_package_rerun_request(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    log = (
        "Package natbib Warning: Citation(s) may have changed.\n"
        "(natbib)                Rerun to get citations correct.\n"
    )
    toolchain.on("pdflatex", fake_latex(log=lambda count: log if count == 1 else "clean\n"))

    outcome = driver.build(descriptor)

    assert outcome.compiler_runs == 2
    assert outcome.converged


def test_index_and_embedded_code(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on(
        "pdflatex",
        fake_latex(files={".idx": "\\indexentry{alpha}{1}\n", ".pytxcode": "=>PYTHONTEX#py#default\n"}),
    )
    toolchain.on("makeindex", fake_tool(".ind", ".ilg"))

    outcome = driver.build(descriptor)

    assert toolchain.tools() == ["pdflatex", "makeindex", "pythontex", "pdflatex"]
    assert outcome.tool_runs[AuxiliaryKind.INDEX] == 1
    assert outcome.tool_runs[AuxiliaryKind.EMBEDDED_CODE] == 1
    assert outcome.compiler_runs == 2


def test_embedded_code_ignores_table_of_contents(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(files={".pytxcode": "code\n", ".toc": "toc\n"}))

    outcome = driver.build(descriptor)

    assert outcome.compiler_runs == 2


def test_trace_records_kind_states(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))

    outcome = driver.build(descriptor)

    first, second = outcome.trace[0], outcome.trace[1]
    assert first[AuxiliaryKind.BIBLIOGRAPHY] is KindState.TOOL_OUTPUT_VERIFIED
    assert first[AuxiliaryKind.INDEX] is KindState.CHECKED_NOT_NEEDED
    assert first[AuxiliaryKind.GLOSSARY] is KindState.CHECKED_NOT_NEEDED
    assert second[AuxiliaryKind.BIBLIOGRAPHY] is KindState.CHECKED_NEEDED_UNCHANGED


def test_tool_failure_marks_state_and_outcome(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))

    def broken_bibtex(call, count):
        fake_tool(".bbl", ".blg")(call, count)
        return 2, "I found no \\citation commands\n"

    toolchain.on("bibtex", broken_bibtex)

    outcome = driver.build(descriptor)

    assert outcome.trace[0][AuxiliaryKind.BIBLIOGRAPHY] is KindState.TOOL_INVOKED
    assert "EEX01" in [entry.code for entry in outcome.diagnostics]
    assert not outcome.success


def test_tool_leaving_stale_output_is_reported_and_build_continues(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    document_builder.write({"doc.bbl": "\\begin{thebibliography}{1}\n\\end{thebibliography}\n"})
    os.utime(descriptor.bbl_file, (1_000_000, 1_000_000))
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))
    # bibtex exits cleanly but only rewrites its transcript
    toolchain.on("bibtex", fake_tool(".blg"))

    outcome = driver.build(descriptor)

    assert toolchain.tools() == ["pdflatex", "bibtex", "pdflatex", "pdflatex"]
    assert outcome.compiler_runs == 3
    assert outcome.converged
    assert [entry.code for entry in outcome.diagnostics] == ["EEX03"]
    assert outcome.trace[0][AuxiliaryKind.BIBLIOGRAPHY] is KindState.TOOL_INVOKED
    assert not outcome.success


def test_disabled_tool_does_not_block_convergence(
    document_builder: DocumentBuilder,
    toolchain: FakeToolchain,
    runner: ProcessRunner,
    config: TexLoopConfig,
) -> None:
    descriptor = document_builder.main_file()
    config.bibtex = ToolConfig(command=None)
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))

    outcome = ConvergenceDriver(runner, config).build(descriptor)

    assert toolchain.tools() == ["pdflatex"]
    assert outcome.converged
    assert outcome.trace[0][AuxiliaryKind.BIBLIOGRAPHY] is KindState.CHECKED_NEEDED_CHANGED


def test_log_problems_are_reported_after_the_last_pass(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    log = (
        "! Undefined control sequence.\n"
        "Overfull \\hbox (12.0pt too wide) in paragraph at lines 3--4\n"
        "LaTeX Font Warning: Font shape `OT1/cmr/bx/sc' undefined\n"
    )
    toolchain.on("pdflatex", fake_latex(log=log))

    outcome = driver.build(descriptor)

    assert [entry.code for entry in outcome.diagnostics] == ["EAP01", "WAP02", "WAP03"]
    assert not outcome.success


def test_execution_failure_aborts_build(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()

    def missing(call, count):
        raise FileNotFoundError(2, "No such file or directory", call.argv[0])

    toolchain.on("pdflatex", missing)

    with pytest.raises(BuildFailure) as excinfo:
        driver.build(descriptor)

    assert excinfo.value.descriptor == descriptor
    assert excinfo.value.compiler_runs == 1
    assert "TEX01" in str(excinfo.value)


def test_execution_failure_of_tool_aborts_build(
    document_builder: DocumentBuilder, toolchain: FakeToolchain, driver: ConvergenceDriver
) -> None:
    descriptor = document_builder.main_file()
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))

    def missing(call, count):
        raise PermissionError(13, "Permission denied", call.argv[0])

    toolchain.on("bibtex", missing)

    with pytest.raises(BuildFailure) as excinfo:
        driver.build(descriptor)

    assert excinfo.value.cause.command == "bibtex"


def test_compiler_runs_carry_reproducible_timestamp(
    document_builder: DocumentBuilder,
    toolchain: FakeToolchain,
    runner: ProcessRunner,
    config: TexLoopConfig,
) -> None:
    descriptor = document_builder.main_file()
    config.source_date_epoch = 1_600_000_000
    toolchain.on("pdflatex", fake_latex(aux=CITING_AUX))
    toolchain.on("bibtex", fake_tool(".bbl", ".blg"))

    ConvergenceDriver(runner, config).build(descriptor)

    latex_calls = [call for call in toolchain.calls if call.tool == "pdflatex"]
    bibtex_calls = [call for call in toolchain.calls if call.tool == "bibtex"]
    assert all(call.env and call.env["SOURCE_DATE_EPOCH"] == "1600000000" for call in latex_calls)
    assert all(call.env is None for call in bibtex_calls)


def test_output_format_selects_declared_output(
    document_builder: DocumentBuilder,
    toolchain: FakeToolchain,
    runner: ProcessRunner,
    config: TexLoopConfig,
) -> None:
    descriptor = document_builder.main_file()
    config.latex.command = "latex"
    config.latex.output_format = "dvi"
    toolchain.on("latex", fake_latex(files={".dvi": "dvi\n"}))

    outcome = ConvergenceDriver(runner, config).build(descriptor)

    assert outcome.output_file == descriptor.dvi_file
    assert outcome.success
