"""
pytest configuration file
"""
import os
import sys

# Make the project root and the shared test fakes importable without installing
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.abspath(os.path.join(TESTS_DIR, '..')))
sys.path.insert(0, TESTS_DIR)
