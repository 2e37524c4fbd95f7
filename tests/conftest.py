from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.document_builder import DocumentBuilder, FakeToolchain
from texloop.diagnostics import DiagnosticLog
from texloop.process import ProcessRunner


@pytest.fixture
def document_builder(tmp_path: Path) -> DocumentBuilder:
    """Provide a reusable document builder rooted at the pytest tmp_path."""
    return DocumentBuilder(tmp_path)


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def runner(toolchain: FakeToolchain) -> ProcessRunner:
    """Runner wired to the fake toolchain; freshness sleeps are skipped."""
    return ProcessRunner(DiagnosticLog(), executor=toolchain, sleep=lambda seconds: None)
