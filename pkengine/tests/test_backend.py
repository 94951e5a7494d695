"""Tests for the host-facing backend operations"""

import errno

import pytest

from pkengine.backend import Backend, TransactionFlag
from pkengine.core.errors import ErrorKind
from pkengine.core.filters import SUPPORTED_FILTERS, Filter
from pkengine.core.job import Info, Job
from pkengine.core.plan import PlanStep, StepType


@pytest.fixture
def backend(scenario_store):
    backend = Backend(store_factory=lambda: scenario_store)
    backend.initialize()
    yield backend
    backend.destroy()


def _finished_job():
    calls = []
    job = Job(on_finished=lambda: calls.append(1))
    return job, calls


class TestCapabilities:

    def test_details(self, backend):
        assert backend.get_filters() == SUPPORTED_FILTERS
        assert backend.get_groups() == {"unknown"}
        assert backend.supports_parallelization() is False
        assert backend.description

    def test_not_initialized(self):
        job, finished = _finished_job()
        Backend().get_packages(job, Filter.NONE)
        assert job.error[0] is ErrorKind.INTERNAL_ERROR
        assert finished == [1]


class TestQueries:

    def test_get_packages(self, backend, scenario_store):
        job, finished = _finished_job()
        backend.get_packages(job, Filter.NONE)
        assert [(info, pid) for info, pid, _ in job.packages] == [
            (Info.INSTALLED, "A;1.0;x86_64;current"),
            (Info.AVAILABLE, "B;2.0;x86_64;current"),
        ]
        assert finished == [1]
        assert job.error is None
        assert scenario_store.closed

    def test_search_names(self, backend):
        job = Job()
        backend.search_names(job, Filter.NONE, ["B"])
        assert [pid for _, pid, _ in job.packages] == ["B;2.0;x86_64;current"]

    def test_search_details(self, backend):
        job = Job()
        backend.search_details(job, Filter.NOT_INSTALLED, ["package"])
        assert [pid for _, pid, _ in job.packages] == ["B;2.0;x86_64;current"]

    def test_resolve(self, backend):
        job = Job()
        backend.resolve(job, Filter.NONE, ["A", "missing"])
        assert job.packages == [(Info.INSTALLED, "A;1.0;x86_64;current", "Package A")]
        assert job.error is None

    def test_get_updates(self, backend):
        job, finished = _finished_job()
        backend.get_updates(job, Filter.NONE)
        assert job.packages == []
        assert finished == [1]

    def test_store_failure_still_finishes(self):
        def broken():
            raise OSError("disk on fire")

        job, finished = _finished_job()
        backend = Backend(store_factory=broken)
        backend.get_packages(job, Filter.NONE)
        assert job.error[0] is ErrorKind.INTERNAL_ERROR
        assert finished == [1]


class TestRefresh:

    def test_refresh(self, backend, scenario_store):
        job = Job()
        backend.refresh_cache(job, force=True)
        assert job.error is None
        assert ('sync', True) in scenario_store.calls

    def test_no_repositories(self, backend, scenario_store):
        scenario_store.sync_code = errno.ENOTSUP
        job, finished = _finished_job()
        backend.refresh_cache(job)
        assert job.error == (ErrorKind.SOURCE_UNAVAILABLE, "No repositories set up")
        assert finished == [1]

    def test_failed_repository(self, backend, scenario_store):
        scenario_store.sync_code = errno.ENOENT
        job = Job()
        backend.refresh_cache(job)
        assert job.error[0] is ErrorKind.SOURCE_UNAVAILABLE


class TestTransactions:

    def test_install(self, backend, scenario_store):
        scenario_store.steps = [PlanStep(StepType.INSTALL, "B", "2.0", "x86_64",
                                         repository="https://repo.example.org/current",
                                         raw={'short_desc': "Package B"})]
        job, finished = _finished_job()
        backend.install_packages(job, TransactionFlag.NONE, ["B;2.0;x86_64;current"])

        assert job.error is None
        assert scenario_store.committed == [('install', 'B-2.0')]
        assert job.packages == [(Info.INSTALLING, "B;2.0;x86_64;current", "Package B")]
        assert finished == [1]
        assert scenario_store.unlock_calls == 1

    def test_simulate(self, backend, scenario_store):
        scenario_store.steps = [PlanStep(StepType.INSTALL, "B", "2.0", "x86_64")]
        job = Job()
        backend.install_packages(job, TransactionFlag.SIMULATE, ["B;2.0;x86_64;current"])
        assert ('commit',) not in scenario_store.calls
        assert len(job.packages) == 1

    def test_only_trusted_is_accepted(self, backend, scenario_store):
        job = Job()
        backend.install_packages(job, TransactionFlag.ONLY_TRUSTED, ["B;2.0;x86_64;current"])
        assert job.error is None
        assert ('commit',) in scenario_store.calls

    def test_install_error(self, backend, scenario_store):
        scenario_store.install_codes['B-2.0'] = errno.ENOENT
        job, finished = _finished_job()
        backend.install_packages(job, TransactionFlag.NONE, ["B;2.0;x86_64;current"])
        assert job.error[0] is ErrorKind.NOT_FOUND
        assert finished == [1]
        assert job.locked is False

    def test_lock_unavailable(self, backend, scenario_store):
        scenario_store.lock_code = errno.EAGAIN
        job = Job()
        backend.update_packages(job, TransactionFlag.NONE, ["A;1.0;x86_64;current"])
        assert job.error[0] is ErrorKind.LOCK_UNAVAILABLE
        assert scenario_store.unlock_calls == 0

    def test_remove_with_dependents(self, backend, scenario_store):
        scenario_store.revdeps = {'A': ['B']}
        job = Job()
        backend.remove_packages(job, TransactionFlag.NONE, ["A;1.0;x86_64;current"],
                                allow_deps=True, autoremove=True)
        assert job.error is None
        assert [c for c in scenario_store.calls if c[0] == 'remove'] == [
            ('remove', 'B', True), ('remove', 'A', True),
        ]

    def test_invalid_package_id(self, backend, scenario_store):
        job, finished = _finished_job()
        backend.remove_packages(job, TransactionFlag.NONE, ["A;1.0"])
        assert job.error[0] is ErrorKind.INVALID_PACKAGE_ID
        assert finished == [1]
        assert scenario_store.lock_calls == 0

    def test_update(self, backend, scenario_store):
        job = Job()
        backend.update_packages(job, TransactionFlag.NONE, ["A;1.1;x86_64;current"])
        assert scenario_store.committed == [('update', 'A')]
