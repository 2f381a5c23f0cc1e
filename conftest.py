"""
Root conftest -- adds the project root to sys.path so tests can import
the backtester package without an install.
"""
import sys
import os

_root = os.path.dirname(__file__)
sys.path.insert(0, _root)
