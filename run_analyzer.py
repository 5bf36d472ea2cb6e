#!/usr/bin/env python3
"""
Simple script to run the workflow analyzer without installing the package.

Usage: ./run_analyzer.py analyze --repo owner/repo
"""

import logging
import sys
from pathlib import Path

# Add the current directory to the Python path
sys.path.insert(0, str(Path(__file__).parent))

from cca_workflows.cli import main


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logging.info("Analyzer stopped by user")
        sys.exit(130)
    except Exception as e:
        logging.error(f"Analyzer failed: {e}")
        sys.exit(1)
