"""
End-to-end tests: run the command-line job on real files with both join strategies
"""

import json
import os
import random
from collections import Counter

import pytest

from urlresolution.cli import EXIT_CANCELLED, EXIT_FAILED, EXIT_OK, main
from urlresolution.config import JobConfig
from urlresolution.coordinator.job_manager import JobStatus
from urlresolution.coordinator.job_runner import JobRunner
from urlresolution.errors import JobCancelled

pytestmark = pytest.mark.integration

# (strategy, splits per input, reduce partitions)
RUN_CONFIGS = [
    ('hash', 1, 1),
    ('sort_merge', 1, 1),
    ('sort_merge', 3, 4),
    ('sort_merge', 7, 2),
    ('auto', 2, 2),
]


@pytest.fixture(params=RUN_CONFIGS, ids=lambda c: f'{c[0]}-{c[1]}x{c[2]}')
def run_job(request, temp_dir):
    """Run the CLI with one of the run configurations; returns (exit code, output path)"""
    strategy, num_map, num_reduce = request.param

    def _run(mapping, register, *extra, output=None):
        output = output or os.path.join(temp_dir, 'out', 'resolved.tsv')
        argv = [mapping, register, output, '--strategy', strategy,
                '--num-map', str(num_map), '--num-reduce', str(num_reduce),
                '--scratch-dir', os.path.join(temp_dir, 'scratch'), *extra]
        return main(argv), output
    return _run


def expected(*lines):
    return Counter(line + '\n' for line in lines)


class TestScenarios:
    """Concrete input/output scenarios"""

    def test_happy_path(self, run_job, s1_inputs, read_output):
        code, output = run_job(*s1_inputs)
        assert code == EXIT_OK
        assert read_output(output) == expected(
            'A\t100\t1.1.1.1', 'B\t200\t2.2.2.2', 'A\t300\t3.3.3.3')

    def test_orphan_register(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['a.com\tA'])
        register = write_lines('register.tsv', ['a.com\t1\tX', 'z.com\t2\tY'])
        code, output = run_job(mapping, register)
        assert code == EXIT_OK
        assert read_output(output) == expected('A\t1\tX')

    def test_identity_mapping(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['x\tx'])
        register = write_lines('register.tsv', ['x\t0\tip'])
        code, output = run_job(mapping, register)
        assert code == EXIT_OK
        assert read_output(output) == expected('x\t0\tip')

    def test_empty_mapping(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', [])
        register = write_lines('register.tsv', ['a.com\t1\tX'])
        code, output = run_job(mapping, register)
        assert code == EXIT_OK
        assert read_output(output) == Counter()

    def test_empty_register(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['a.com\tA'])
        register = write_lines('register.tsv', [])
        code, output = run_job(mapping, register)
        assert code == EXIT_OK
        assert read_output(output) == Counter()

    def test_malformed_register(self, run_job, write_lines, read_output, temp_dir):
        mapping = write_lines('mapping.tsv', ['a.com\tA'])
        register = write_lines('register.tsv', ['a.com\t1\tX', 'a.com\tNOT_A_NUMBER\tip', 'a.com\t2\tY'])
        rejects = os.path.join(temp_dir, 'rejects.tsv')
        metrics = os.path.join(temp_dir, 'metrics.json')

        code, output = run_job(mapping, register, '--rejects', rejects, '--metrics', metrics)

        assert code == EXIT_OK
        assert read_output(output) == expected('A\t1\tX', 'A\t2\tY')
        with open(rejects, 'rb') as f:
            entries = f.read().decode('utf-8').splitlines()
        assert len(entries) == 1
        assert entries[0].split('\t')[:3] == ['register', '10', 'MalformedNumeric']
        with open(metrics) as f:
            assert json.load(f)['rejected_records'] == {'MalformedNumeric': 1}

    def test_crlf_and_unterminated_last_line(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['a.com\tA'], terminator='\r\n')
        register = os.path.join(os.path.dirname(mapping), 'register.tsv')
        with open(register, 'wb') as f:
            f.write(b'a.com\t1\tX\r\na.com\t2\tY')
        code, output = run_job(mapping, register)
        assert code == EXIT_OK
        assert read_output(output) == expected('A\t1\tX', 'A\t2\tY')

    def test_keep_unmatched(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['a.com\tA'])
        register = write_lines('register.tsv', ['a.com\t1\tX', 'z.com\t2\tY'])
        code, output = run_job(mapping, register, '--keep-unmatched')
        assert code == EXIT_OK
        assert read_output(output) == expected('A\t1\tX', '\t2\tY')


class TestProperties:
    """Properties that hold for any input"""

    @pytest.fixture
    def generated(self, write_lines):
        rng = random.Random(11)
        keys = [f'http://h{i % 7}.example/p{i}' for i in range(60)]
        mapping_lines = [f'{k}\thttp://canon{i}.example/' for i, k in enumerate(keys[:45])]
        register_lines = [f'{rng.choice(keys)}\t{rng.randint(-10**12, 10**12)}\t10.{i % 256}.0.{i % 7}'
                          for i in range(500)]
        return mapping_lines, register_lines

    def test_join_correctness(self, run_job, generated, write_lines, read_output):
        mapping_lines, register_lines = generated
        canonical = dict(line.split('\t') for line in mapping_lines)
        reference = Counter()
        for line in register_lines:
            raw, ts, ip = line.split('\t')
            if raw in canonical:
                reference[f'{canonical[raw]}\t{ts}\t{ip}\n'] += 1

        code, output = run_job(write_lines('m.tsv', mapping_lines), write_lines('r.tsv', register_lines))

        assert code == EXIT_OK
        result = read_output(output)
        assert result == reference
        # timestamp and ip come through byte-identical, with exactly two TABs per line
        for line in result:
            assert line.count('\t') == 2 and line.endswith('\n') and not line.endswith('\r\n')

    def test_cardinality(self, run_job, generated, write_lines, read_output):
        mapping_lines, register_lines = generated
        mapped = {line.split('\t')[0] for line in mapping_lines}
        register_lines = [line for line in register_lines if line.split('\t')[0] in mapped]

        code, output = run_job(write_lines('m.tsv', mapping_lines), write_lines('r.tsv', register_lines))

        assert code == EXIT_OK
        assert sum(read_output(output).values()) == len(register_lines)

    def test_order_independence(self, run_job, generated, write_lines, read_output, temp_dir):
        mapping_lines, register_lines = generated
        code, baseline_path = run_job(write_lines('m.tsv', mapping_lines),
                                      write_lines('r.tsv', register_lines))
        assert code == EXIT_OK
        baseline = read_output(baseline_path)

        rng = random.Random(5)
        rng.shuffle(mapping_lines)
        rng.shuffle(register_lines)
        code, permuted_path = run_job(write_lines('m2.tsv', mapping_lines),
                                      write_lines('r2.tsv', register_lines),
                                      output=os.path.join(temp_dir, 'permuted.tsv'))
        assert code == EXIT_OK
        assert read_output(permuted_path) == baseline

    def test_rerun_overwrites_output(self, run_job, s1_inputs, read_output):
        code, output = run_job(*s1_inputs)
        assert code == EXIT_OK
        first = read_output(output)

        with open(output, 'ab') as f:
            f.write(b'stale\tline\tthat must disappear\n')

        code, output = run_job(*s1_inputs)
        assert code == EXIT_OK
        assert read_output(output) == first


class TestFailures:
    """Job-fatal errors produce a non-zero exit status"""

    def test_missing_mapping(self, run_job, s1_inputs, temp_dir):
        _, register = s1_inputs
        code, _ = run_job(os.path.join(temp_dir, 'missing.tsv'), register)
        assert code == EXIT_FAILED

    def test_missing_register(self, run_job, s1_inputs, temp_dir):
        mapping, _ = s1_inputs
        code, _ = run_job(mapping, os.path.join(temp_dir, 'missing.tsv'))
        assert code == EXIT_FAILED

    def test_unwritable_output(self, run_job, s1_inputs, temp_dir):
        code, _ = run_job(*s1_inputs, output=temp_dir)
        assert code == EXIT_FAILED

    def test_duplicate_mapping_is_fatal_by_default(self, run_job, write_lines):
        mapping = write_lines('mapping.tsv', ['a.com\tA1', 'a.com\tA2'])
        register = write_lines('register.tsv', ['a.com\t1\tX'])
        code, _ = run_job(mapping, register)
        assert code == EXIT_FAILED

    def test_duplicate_mapping_fan_out(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['a.com\tA1', 'a.com\tA2'])
        register = write_lines('register.tsv', ['a.com\t1\tX'])
        code, output = run_job(mapping, register, '--duplicates', 'fan_out')
        assert code == EXIT_OK
        assert read_output(output) == expected('A1\t1\tX', 'A2\t1\tX')

    def test_duplicate_mapping_first_wins(self, run_job, write_lines, read_output):
        mapping = write_lines('mapping.tsv', ['a.com\tA1', 'b.com\tB', 'a.com\tA2'])
        register = write_lines('register.tsv', ['a.com\t1\tX'])
        code, output = run_job(mapping, register, '--duplicates', 'first_wins')
        assert code == EXIT_OK
        assert read_output(output) == expected('A1\t1\tX')

    def test_all_records_rejected(self, run_job, write_lines):
        mapping = write_lines('mapping.tsv', ['a.com\tA'])
        register = write_lines('register.tsv', ['a.com\tnope\tX', 'garbage'])
        code, _ = run_job(mapping, register)
        assert code == EXIT_FAILED

    def test_usage_error(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(['only-one-argument'])
        assert excinfo.value.code == 2


class TestJobRunner:
    """Tests for the in-process runner"""

    def test_metrics_and_cleanup(self, s1_inputs, temp_dir):
        mapping, register = s1_inputs
        scratch = os.path.join(temp_dir, 'scratch')
        config = JobConfig(mapping, register, os.path.join(temp_dir, 'out.tsv'),
                           strategy='sort_merge', num_map_tasks=2, num_reduce_tasks=2,
                           scratch_dir=scratch)
        runner = JobRunner(config)
        metrics = runner.run()

        assert runner.job.status == JobStatus.COMPLETED
        assert metrics.status == 'completed'
        assert metrics.strategy == 'sort_merge'
        assert metrics.output_rows == 3
        assert metrics.matched_registers == 3
        assert metrics.num_map_tasks == 4
        assert metrics.num_reduce_tasks == 2
        assert metrics.intermediate_size_bytes > 0
        assert os.listdir(scratch) == []

    def test_keep_intermediate(self, s1_inputs, temp_dir):
        mapping, register = s1_inputs
        scratch = os.path.join(temp_dir, 'scratch')
        config = JobConfig(mapping, register, os.path.join(temp_dir, 'out.tsv'),
                           strategy='sort_merge', scratch_dir=scratch, keep_intermediate=True)
        runner = JobRunner(config)
        runner.run()
        assert sorted(os.listdir(os.path.join(scratch, runner.job.job_id))) == ['intermediate', 'parts']

    @pytest.mark.parametrize('strategy', ['hash', 'sort_merge'])
    def test_cancelled_before_start(self, s1_inputs, temp_dir, strategy):
        mapping, register = s1_inputs
        config = JobConfig(mapping, register, os.path.join(temp_dir, 'out.tsv'), strategy=strategy)
        runner = JobRunner(config)
        runner.cancel()
        with pytest.raises(JobCancelled):
            runner.run()
        assert runner.job.status == JobStatus.CANCELLED

    def test_exit_code_on_cancel(self, monkeypatch, s1_inputs, temp_dir):
        def cancelled_run(self):
            raise JobCancelled("Job cancelled")

        monkeypatch.setattr(JobRunner, 'run', cancelled_run)
        code = main([*s1_inputs, os.path.join(temp_dir, 'out.tsv')])
        assert code == EXIT_CANCELLED
