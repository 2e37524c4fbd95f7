"""Core data models shared across texloop components."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

SUFFIX_TEX = ".tex"
SUFFIX_PDF = ".pdf"
SUFFIX_DVI = ".dvi"
SUFFIX_XDV = ".xdv"
SUFFIX_LOG = ".log"
SUFFIX_AUX = ".aux"
SUFFIX_TOC = ".toc"
SUFFIX_BBL = ".bbl"
SUFFIX_BLG = ".blg"
SUFFIX_IDX = ".idx"
SUFFIX_IND = ".ind"
SUFFIX_ILG = ".ilg"
SUFFIX_GLO = ".glo"
SUFFIX_GLS = ".gls"
SUFFIX_GLG = ".glg"
SUFFIX_PYTXCODE = ".pytxcode"

OUTPUT_SUFFIXES = {
    "pdf": SUFFIX_PDF,
    "dvi": SUFFIX_DVI,
    "xdv": SUFFIX_XDV,
}


@dataclass(frozen=True)
class DocumentDescriptor:
    """A LaTeX main file together with the sibling files the toolchain writes.

    Every derived path lives in ``parent_dir`` and shares the main file's stem.
    """

    tex_file: Path
    parent_dir: Path
    stem: str
    pdf_file: Path
    dvi_file: Path
    xdv_file: Path
    log_file: Path
    aux_file: Path
    toc_file: Path
    bbl_file: Path
    blg_file: Path
    idx_file: Path
    ind_file: Path
    ilg_file: Path
    glo_file: Path
    gls_file: Path
    glg_file: Path
    pytxcode_file: Path

    @classmethod
    def from_main_file(cls, tex_file: Path | str) -> "DocumentDescriptor":
        path = Path(tex_file).expanduser().resolve()
        parent = path.parent
        stem = path.stem if path.suffix == SUFFIX_TEX else path.name

        def sibling(suffix: str) -> Path:
            return parent / f"{stem}{suffix}"

        return cls(
            tex_file=path,
            parent_dir=parent,
            stem=stem,
            pdf_file=sibling(SUFFIX_PDF),
            dvi_file=sibling(SUFFIX_DVI),
            xdv_file=sibling(SUFFIX_XDV),
            log_file=sibling(SUFFIX_LOG),
            aux_file=sibling(SUFFIX_AUX),
            toc_file=sibling(SUFFIX_TOC),
            bbl_file=sibling(SUFFIX_BBL),
            blg_file=sibling(SUFFIX_BLG),
            idx_file=sibling(SUFFIX_IDX),
            ind_file=sibling(SUFFIX_IND),
            ilg_file=sibling(SUFFIX_ILG),
            glo_file=sibling(SUFFIX_GLO),
            gls_file=sibling(SUFFIX_GLS),
            glg_file=sibling(SUFFIX_GLG),
            pytxcode_file=sibling(SUFFIX_PYTXCODE),
        )

    def with_suffix(self, suffix: str) -> Path:
        """Return the sibling ``<stem><suffix>``; a missing leading dot is added."""
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        return self.parent_dir / f"{self.stem}{suffix}"

    def output_file(self, output_format: str = "pdf") -> Path:
        try:
            suffix = OUTPUT_SUFFIXES[output_format.lower()]
        except KeyError as exc:
            raise ValueError(f"Unsupported output format '{output_format}'") from exc
        return self.with_suffix(suffix)

    def __str__(self) -> str:
        return self.tex_file.name
