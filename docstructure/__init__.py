"""
Document Structure Engine
=========================
Section detection for extracted documents and safe parsing of LLM replies
that reference the detected sections.

Architecture:
    - Pattern Classifier: Ordered rule table for headers, lists and tables
    - Section Detector: Flat candidate sections with confidence scores
    - Hierarchy Builder: Stack-based section tree construction
    - Anchor Allocator: Unique section markers embedded in document text
    - Structure Analyzer: Orchestrates detection, filtering and statistics
    - Schema Store: Named response schemas and lenient validation
    - Response Parser: Fence stripping, JSON repair, anchor reconciliation
    - Metadata Extractors: Per-response-type quality metrics

Version: 1.0.0
"""

__version__ = "1.0.0"
