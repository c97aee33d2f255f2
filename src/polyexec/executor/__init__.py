"""
Execution backends for the code execution API.

This package exposes concrete executors for supported languages.  The
coordinator builds one executor per enabled language at startup and routes
every request to it.  There are three kinds of backend:

* ``SandboxExecutor`` evaluates restricted Python in a worker interpreter;
* ``PythonExecutor``, ``JavaScriptExecutor`` and ``BashExecutor`` spawn an
  interpreter as a child process;
* ``CExecutor`` and ``CppExecutor`` compile a temporary source file and run
  the resulting binary.

Additional executors can be added by implementing the ``CodeExecutor``
interface from ``base.py``.
"""

from .base import CodeExecutor, ExecutionOutcome, OutputSink, discard_output
from .bash_executor import BashExecutor
from .compiled_executor import CExecutor, CompiledExecutor, CppExecutor
from .javascript_executor import JavaScriptExecutor
from .python_executor import PythonExecutor
from .sandbox_executor import SandboxExecutor

__all__ = [
    "CodeExecutor",
    "ExecutionOutcome",
    "OutputSink",
    "discard_output",
    "BashExecutor",
    "CExecutor",
    "CompiledExecutor",
    "CppExecutor",
    "JavaScriptExecutor",
    "PythonExecutor",
    "SandboxExecutor",
]
