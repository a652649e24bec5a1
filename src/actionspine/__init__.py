"""
actionspine - in-process typed action pipelines.

Register handlers against named actions, dispatch an action with a payload,
and get back a report of what ran:

    >>> from actionspine import ActionRegister
    >>> register = ActionRegister()
    >>> register.register("greet", lambda payload, ctl: f"hello {payload}")
    >>> report = await register.dispatch_with_result("greet", "world")
    >>> report.results
    ['hello world']
"""

__version__ = "0.1.0"

from actionspine.core import *  # noqa
from actionspine.execution import *  # noqa
