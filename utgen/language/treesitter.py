"""Cached tree-sitter parsers for the supported grammars."""

from __future__ import annotations

import importlib
from typing import Dict, Optional

from tree_sitter import Language, Node, Parser

# Format: "grammar": ("module_name", "function_name")
LANGUAGE_MODULES: Dict[str, tuple] = {
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}

_language_cache: Dict[str, Language] = {}
_parser_cache: Dict[str, Parser] = {}


def get_language(grammar: str) -> Language:
    if grammar in _language_cache:
        return _language_cache[grammar]

    module_info = LANGUAGE_MODULES.get(grammar)
    if not module_info:
        raise ValueError(f"Unsupported grammar for tree-sitter: {grammar}")

    module_name, func_name = module_info
    language_module = importlib.import_module(module_name)
    lang_obj = getattr(language_module, func_name)()
    lang = lang_obj if isinstance(lang_obj, Language) else Language(lang_obj)
    _language_cache[grammar] = lang
    return lang


def get_parser(grammar: str) -> Parser:
    if grammar in _parser_cache:
        return _parser_cache[grammar]
    parser = Parser(get_language(grammar))
    _parser_cache[grammar] = parser
    return parser


def node_text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")
