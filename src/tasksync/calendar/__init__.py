"""OAuth token lifecycle and one-way calendar event sync.

Import submodules directly (``tasksync.calendar.sync`` and so on); the
package itself re-exports nothing because ``tasksync.config`` imports
:mod:`tasksync.calendar.errors`.
"""
