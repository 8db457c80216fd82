# ============================================================================
# osintforge/engine/__init__.py
# Execution Engine Package
# ============================================================================
#
# PURPOSE:
# Everything that turns a pending job into a finished one:
# - sandbox.py: runs one tool invocation in a discard-after-use container
# - lifecycle.py: JobManager, the only writer of job state
# - worker.py: WorkerPool, bounded asyncio workers pulling from a priority queue
#
# ============================================================================
