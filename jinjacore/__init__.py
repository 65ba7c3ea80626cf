"""Lexer, syntax tree nodes, closure analysis and instruction generation for a Jinja-style template language."""

__version__ = "0.1.0"
__all__ = ["codegen", "debug", "emitter", "instructions", "lexer", "meta", "nodes", "tokens"]