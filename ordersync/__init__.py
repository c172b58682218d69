"""
                Toast Order Sync

Incremental order synchronization and enrichment engine for a
live kitchen order board, with hybrid Mock/Real POS API architecture.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
