"""Backend exporters for flows."""

from flowwright.backend.codegen import CodeSynthesizer, Dialect, synthesize
from flowwright.backend.graphviz import GraphvizExporter
from flowwright.backend.python import PythonDialect, PythonExporter
from flowwright.backend.typescript import TypeScriptDialect, TypeScriptExporter

DIALECTS = {
    PythonDialect.name: PythonDialect,
    TypeScriptDialect.name: TypeScriptDialect,
}

__all__ = [
    "CodeSynthesizer",
    "Dialect",
    "DIALECTS",
    "GraphvizExporter",
    "PythonDialect",
    "PythonExporter",
    "TypeScriptDialect",
    "TypeScriptExporter",
    "synthesize",
]
