import glob
import importlib
import importlib.util
import logging
import os
import pkgutil
from types import ModuleType

from kubectl_diagnose.rules.base_rule import DiagnosticRule

logger = logging.getLogger(__name__)

RULES_PACKAGE = "kubectl_diagnose.rules"
ALLOWED_REQUIREMENTS = {"pod", "events", "node", "service", "policies"}
SEVERITIES = {"info", "warning", "critical"}

# ----------------------------
# Dynamic Rule Loader
# ----------------------------


def _rules_in(module: ModuleType) -> list[DiagnosticRule]:
    rules: list[DiagnosticRule] = []
    for attr in dir(module):
        cls = getattr(module, attr)
        if (
            isinstance(cls, type)
            and issubclass(cls, DiagnosticRule)
            and cls is not DiagnosticRule
            and cls.__module__ == module.__name__
        ):
            rules.append(cls())
    return rules


def validate_rule(rule: DiagnosticRule):
    required_fields = ["name", "category", "priority", "requires", "severity"]
    for field in required_fields:
        if not hasattr(rule, field):
            raise ValueError(f"Rule {rule} missing required field '{field}'")

    if not isinstance(rule.name, str) or not rule.name:
        raise ValueError("Rule.name must be a non-empty string")
    if not isinstance(rule.category, str) or not rule.category:
        raise ValueError(f"Rule {rule.name}.category must be a non-empty string")
    if not isinstance(rule.priority, int) or isinstance(rule.priority, bool):
        raise ValueError(f"Rule {rule.name}.priority must be an integer")
    if not (0 <= rule.priority <= 1000):
        raise ValueError(f"Rule {rule.name}.priority must be between 0 and 1000")
    if rule.severity not in SEVERITIES:
        raise ValueError(f"Rule {rule.name}.severity must be one of {sorted(SEVERITIES)}")
    if not isinstance(rule.requires, (list, tuple, set)):
        raise ValueError(f"Rule {rule.name}.requires must be a list")

    unknown = set(rule.requires) - ALLOWED_REQUIREMENTS
    if unknown:
        raise ValueError(
            f"Rule {rule.name}.requires has invalid keys: {sorted(unknown)}"
        )


def _sorted_and_validated(rules: list[DiagnosticRule]) -> list[DiagnosticRule]:
    names: set[str] = set()
    for rule in rules:
        validate_rule(rule)
        if rule.name in names:
            raise ValueError(f"Duplicate rule name '{rule.name}'")
        names.add(rule.name)
    # Stable: equal priorities keep discovery order
    return sorted(rules, key=lambda r: r.priority)


def load_rules() -> list[DiagnosticRule]:
    """
    Import every module of the built-in rules package and instantiate the
    DiagnosticRule subclasses it defines, ordered by priority.
    """
    package = importlib.import_module(RULES_PACKAGE)
    rules: list[DiagnosticRule] = []
    for info in sorted(pkgutil.iter_modules(package.__path__), key=lambda i: i.name):
        if info.name == "base_rule":
            continue
        module = importlib.import_module(f"{RULES_PACKAGE}.{info.name}")
        rules.extend(_rules_in(module))
    return _sorted_and_validated(rules)


def load_plugins(plugin_folder: str | None = None) -> list[DiagnosticRule]:
    """
    Load extra rules from *.py files in a folder outside the package.
    """
    if plugin_folder is None or not os.path.isdir(plugin_folder):
        return []

    rules: list[DiagnosticRule] = []
    for file in sorted(glob.glob(os.path.join(plugin_folder, "*.py"))):
        module_name = "kubectl_diagnose_plugin_" + os.path.splitext(os.path.basename(file))[0]
        spec = importlib.util.spec_from_file_location(module_name, file)
        if spec is None or spec.loader is None:
            continue
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        found = _rules_in(module)
        logger.debug("Loaded %d plugin rule(s) from %s", len(found), file)
        rules.extend(found)

    return _sorted_and_validated(rules)
