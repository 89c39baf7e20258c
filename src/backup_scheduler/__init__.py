"""
Database Backup Scheduler

This package runs scheduled database backups and reports on them.

Core Concepts:

Job:
    A JobDefinition names one database to back up, its schedule, its retention
    window and how many attempts a run may take. Jobs are loaded once from the
    YAML configuration and never change while the process runs.

Fire event:
    A FireEvent asks for one run of one job. It is produced by the job's
    schedule, by a manual "run this job" request, or by a manual "run every
    job" request.

Run:
    A run executes a fire event: it waits for a slot on the concurrency gate,
    dumps the database (retrying up to the job's attempt budget), uploads the
    artifact, ages out old artifacts and reports the RunResult.

Relationships:
    - A Job has at most one run in progress at any time.
    - A run has one or more attempts; only the last attempt's error is the
      run's error, but every attempt's diagnostics are kept.
"""

__version__ = "0.1.0"
