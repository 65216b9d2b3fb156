"""Code execution module — container sandbox for generated analysis code.

Provides code generation and sanitization, the versioned execution harness,
and the Docker-backed execution engine.
"""
