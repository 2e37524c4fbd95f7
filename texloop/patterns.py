"""Textual markers scanned in files written by LaTeX and its auxiliary tools."""

from __future__ import annotations

import re

# Markers in the compiler's primary cross-reference file (.aux).
BIBLIOGRAPHY_NEEDED = re.compile(r"^\\(?:citation|bibstyle|bibdata)\{")
BIBLIOGRAPHY_RELEVANT = re.compile(r"^\\(?:citation|bibstyle|bibdata)\{")
GLOSSARY_NEEDED = re.compile(r"^\\@istfilename\{")
# \@newglossary{<type>}{<log ext>}{<output ext>}{<input ext>}; the input
# extension names the entry file written by the glossaries package.
GLOSSARY_DECLARED = re.compile(
    r"^\\@newglossary\{[^{}]*\}\{[^{}]*\}\{[^{}]*\}\{(?P<ext>[^{}]+)\}"
)
AUX_INCLUDE = re.compile(r"^\\@input\{(?P<file>[^{}]+)\}")

# Index entries carrying an index name require splitindex.
SPLIT_INDEX_ENTRY = re.compile(r"^\\indexentry\[[^\]]+\]")

# Compiler log file.
LATEX_ERROR = r"^! "
LATEX_WARNING = (
    r"^LaTeX Warning: |"
    r"^LaTeX Font Warning: |"
    r"^(?:Package|Class) .+ Warning: |"
    r"^Missing character: There is no .* in font .*!$|"
    r"^pdfTeX warning \(ext4\): destination with the same identifier|"
    r"^\* Font .+ does not contain script |"
    r"^A space is missing\. \(No warning\)\."
)
LATEX_BAD_BOX = r"^(?:Ov|Und)erfull \\[hv]box"
LATEX_NEEDS_RERUN = (
    r"^LaTeX Warning: Label\(s\) may have changed\. Rerun to get cross-references right\.$|"
    r"^Package \w+ Warning: .*Rerun .*$|"
    r"^Package \w+ Warning: .*\n\(\w+\) +.*Rerun .*$|"
    r"^LaTeX Warning: Etaremune labels have changed\.$|"
    r"^\(rerunfilecheck\) +Rerun to get outlines right$"
)

# Tool log files (.blg for bibtex, .ilg/.glg for makeindex and makeglossaries).
BIBTEX_ERROR = r"error message"
BIBTEX_WARNING = r"Warning--"
MAKEINDEX_ERROR = r"!! Input index error "
MAKEINDEX_WARNING = r"## Warning "
