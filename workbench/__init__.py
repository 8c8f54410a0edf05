"""AI Workbench - workflow execution engine.

Runs user-defined pipelines of typed nodes over chunks of a document:
- Chunking of text and delimited tables into process units
- A small workflow script language (func, prompt and print nodes)
- Per-unit execution with short-circuiting and cancellation
- Export of results as documents or CSV
"""

__version__ = "0.1.0"
