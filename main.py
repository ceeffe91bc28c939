#!/usr/bin/env python3
"""
Invoice Tax Engine - Entry Point

Inspects the audit trail of calls made to the external tax engine.

Usage:
    python main.py records --invoice <id> --tenant <id>
    python main.py records --invoice <id> --tenant <id> --all
    python main.py taxed --invoice <id> --tenant <id>
    python main.py --db sqlite:///invoice_tax.db summary --invoice <id> --tenant <id>
"""

from invoice_tax.cli import main

if __name__ == "__main__":
    main()
