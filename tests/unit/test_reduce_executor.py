"""
Unit tests for the reduce executor
"""

import os
import pickle

import pytest

from urlresolution.config import DuplicatePolicy
from urlresolution.engine import sort_run, tag_mapping, tag_register
from urlresolution.errors import IOFailure, InvariantViolation
from urlresolution.records import MappingRow, RegisterRow
from urlresolution.worker.reduce_executor import ReduceExecutor, read_run


def write_run(path, records, batch_size=2):
    records = sort_run(list(records))
    with open(path, 'wb') as f:
        for i in range(0, len(records), batch_size):
            pickle.dump(records[i:i + batch_size], f)
    return path


class TestReadRun:
    """Tests for streaming run files"""

    def test_reads_all_frames(self, temp_dir):
        records = [tag_register(RegisterRow(f'k{i}', i, 'ip')) for i in range(5)]
        path = write_run(os.path.join(temp_dir, 'run.pickle'), records)
        assert list(read_run(path)) == sort_run(records)

    def test_missing_run_raises(self, temp_dir):
        with pytest.raises(IOFailure):
            list(read_run(os.path.join(temp_dir, 'missing.pickle')))

    def test_corrupt_run_raises(self, temp_dir):
        path = os.path.join(temp_dir, 'run.pickle')
        with open(path, 'wb') as f:
            f.write(b'\x00\x01\x02')
        with pytest.raises(IOFailure):
            list(read_run(path))


class TestReduceExecutor:
    """Tests for reduce task execution"""

    def test_merges_runs_into_part_file(self, temp_dir):
        mapping_run = write_run(os.path.join(temp_dir, 'm.pickle'), [
            tag_mapping(MappingRow('a.com', 'A')),
            tag_mapping(MappingRow('b.com', 'B')),
        ])
        register_run = write_run(os.path.join(temp_dir, 'r.pickle'), [
            tag_register(RegisterRow('a.com', 100, '1.1.1.1')),
            tag_register(RegisterRow('b.com', 200, '2.2.2.2')),
            tag_register(RegisterRow('c.com', 300, '3.3.3.3')),
        ])
        out_dir = os.path.join(temp_dir, 'parts')

        executor = ReduceExecutor('job1', 0, 0, [mapping_run, register_run], out_dir)
        result = executor.execute()

        assert result['part_file'] == os.path.join(out_dir, 'part-0.txt')
        assert result['rows_written'] == 2
        assert result['stats'].unmatched_registers == 1
        with open(result['part_file'], 'rb') as f:
            assert f.read() == b'A\t100\t1.1.1.1\nB\t200\t2.2.2.2\n'

    def test_no_runs_writes_empty_part(self, temp_dir):
        executor = ReduceExecutor('job1', 1, 1, [], temp_dir)
        result = executor.execute()
        assert result['rows_written'] == 0
        assert os.path.getsize(result['part_file']) == 0

    def test_duplicate_across_runs_is_fatal(self, temp_dir):
        run1 = write_run(os.path.join(temp_dir, 'm1.pickle'), [tag_mapping(MappingRow('a', 'A1'))])
        run2 = write_run(os.path.join(temp_dir, 'm2.pickle'), [tag_mapping(MappingRow('a', 'A2'))])
        executor = ReduceExecutor('job1', 0, 0, [run1, run2], temp_dir)
        with pytest.raises(InvariantViolation):
            executor.execute()

    def test_first_wins_follows_run_order(self, temp_dir):
        run1 = write_run(os.path.join(temp_dir, 'm1.pickle'), [tag_mapping(MappingRow('a', 'A1'))])
        run2 = write_run(os.path.join(temp_dir, 'm2.pickle'), [tag_mapping(MappingRow('a', 'A2'))])
        run3 = write_run(os.path.join(temp_dir, 'r.pickle'), [tag_register(RegisterRow('a', 1, 'ip'))])
        executor = ReduceExecutor('job1', 0, 0, [run1, run2, run3], temp_dir,
                                  duplicate_policy=DuplicatePolicy.FIRST_WINS)
        result = executor.execute()
        with open(result['part_file'], 'rb') as f:
            assert f.read() == b'A1\t1\tip\n'
        assert result['stats'].duplicate_mappings == 1
