"""
Second Brain knowledge-base assistant.

Answers natural-language questions against a user's uploaded documents and
recordings by orchestrating dense, lexical, paraphrase and cross-language
retrieval into a single cited evidence set for a local language model.
"""

__version__ = "0.1.0"
