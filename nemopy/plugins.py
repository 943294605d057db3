"""
Custom constraint plugins and include scripts.

A plugin is any callable taking a ``CustomConstraintContext``. File plugins
are Python files defining ``add_custom_constraints(context)``::

    def add_custom_constraints(context):
        capacity = context.model.variable("vtotalcapacityannual")
        for year in context.inyears:
            context.model.add_constraint(
                f"max_coal_{year}",
                {("vtotalcapacityannual", ("R1", "COAL", year)): 1.0},
                "<=", 5.0)

Plugins run once per foresight group, so they must tolerate being called
with different year subsets.
"""

import importlib.util
import logging
import os
import runpy
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

PLUGIN_FUNCTION = "add_custom_constraints"


@dataclass
class CustomConstraintContext:
    """Run context handed to custom constraint plugins."""

    model: object
    db: object
    dbpath: str
    quiet: bool = False
    restrictyears: bool = False
    inyears: list = field(default_factory=list)
    data: object = None
    group: int = 1


def load_plugin(path):
    """
    Load a plugin file and return its ``add_custom_constraints`` function.

    Args:
        path (str): Path of a Python file

    Returns:
        callable: The plugin function
    """
    name = "nemopy_plugin_" + os.path.splitext(os.path.basename(path))[0]
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load plugin file {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    function = getattr(module, PLUGIN_FUNCTION, None)
    if not callable(function):
        raise ImportError(f"Plugin file {path} does not define {PLUGIN_FUNCTION}(context)")
    return function


def resolve_plugins(plugins):
    """Turn a mix of callables and file paths into a list of callables; unloadable files are skipped."""
    if plugins is None:
        return []
    if callable(plugins) or isinstance(plugins, str):
        plugins = [plugins]

    resolved = []
    for plugin in plugins:
        if callable(plugin):
            resolved.append(plugin)
            continue
        if not plugin:
            continue
        try:
            resolved.append(load_plugin(plugin))
            logger.info(f"Loaded custom constraints from {plugin}.")
        except (ImportError, OSError, SyntaxError) as e:
            logger.error(f"Could not load custom constraints from {plugin}: {e}. Continuing without them.")
    return resolved


def run_custom_constraints(plugins, context):
    """
    Invoke each plugin with the context.

    A failing plugin is logged and skipped; constraints it added before
    failing stay in the model.
    """
    for plugin in plugins:
        name = getattr(plugin, "__name__", repr(plugin))
        before = context.model.num_constraints
        try:
            plugin(context)
        except Exception as e:
            logger.error(f"Custom constraint plugin {name} failed: {e}. Continuing with the scenario calculation.")
            continue
        added = context.model.num_constraints - before
        if not context.quiet:
            logger.info(f"✓ Custom constraint plugin {name} added {added} constraints.")


def run_include_script(path, dbpath, quiet=False):
    """
    Run a before/after include script.

    The script sees ``dbpath`` and ``quiet`` as globals. Failures are logged
    and the calculation continues.
    """
    if not path:
        return
    try:
        runpy.run_path(path, init_globals={"dbpath": dbpath, "quiet": quiet}, run_name="__nemopy_include__")
        if not quiet:
            logger.info(f"✓ Ran include script {path}.")
    except Exception as e:
        logger.error(f"Could not run include script {path}: {e}. Continuing with the scenario calculation.")
