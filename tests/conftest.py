"""
Pytest configuration and shared fixtures
"""

import os
import shutil
import tempfile
from collections import Counter

import pytest


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    dirpath = tempfile.mkdtemp()
    yield dirpath
    shutil.rmtree(dirpath)


@pytest.fixture
def write_lines(temp_dir):
    """Write lines (LF-terminated) to a file in temp_dir and return its path"""
    def _write(name, lines, terminator='\n'):
        filepath = os.path.join(temp_dir, name)
        with open(filepath, 'wb') as f:
            for line in lines:
                f.write((line + terminator).encode('utf-8', 'surrogateescape'))
        return filepath
    return _write


@pytest.fixture
def read_output():
    """Read an output file as a Counter of its lines (order-insensitive)"""
    def _read(filepath):
        with open(filepath, 'rb') as f:
            data = f.read().decode('utf-8', 'surrogateescape')
        return Counter(data.splitlines(keepends=True))
    return _read


@pytest.fixture
def s1_inputs(write_lines):
    """Happy-path inputs"""
    mapping = write_lines('mapping.tsv', ['a.com\tA', 'b.com\tB'])
    register = write_lines('register.tsv', [
        'a.com\t100\t1.1.1.1',
        'b.com\t200\t2.2.2.2',
        'a.com\t300\t3.3.3.3',
    ])
    return mapping, register
