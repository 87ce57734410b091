"""
Territory Management Migration Tools

A toolkit for migrating Salesforce Territory Management (TM1) configuration
to Enterprise Territory Management (TM2).

Supports:
- Analysis of TM1 record volumes, sharing rules and dependencies
- Lossless extraction of TM1 data and metadata
- Transformation of TM1 structures into deployable TM2 metadata and CSV data
- Gated deployment of TM2 sharing rules and bulk loading of associations
- Versioned JSON reports for every stage
"""

__version__ = "0.1.0"
