from typing import Dict, List, Optional, Tuple


class DeployError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class ConfigurationError(DeployError):
    def __init__(self, problems: List[str]):
        super().__init__("invalid configuration: " + "; ".join(problems))
        self.problems = problems


class ValidationError(DeployError):
    status_code = 400

    def __init__(self, issues: List[Tuple[str, Dict[str, str]]]):
        self.issues = issues
        super().__init__(self._render(issues))

    @staticmethod
    def _render(issues) -> str:
        s = ""
        for message, fields in issues:
            s += message + "\n"
            for key, value in fields.items():
                s += f" - {key}: {value}.\n"
        return s


class DependencyNotFound(DeployError):
    status_code = 400

    def __init__(self, alias: str, resource_type: str):
        super().__init__(f"unable to get resource {alias} ({resource_type})")
        self.alias = alias
        self.resource_type = resource_type


class RegistryUnavailable(DeployError):
    def __init__(self, message: str, alias: str = None, resource_type: str = None):
        if alias:
            message = f"{message} while resolving {alias} ({resource_type})"
        super().__init__(message)
        self.alias = alias
        self.resource_type = resource_type


class TransportError(DeployError):
    pass


class NameCollision(DeployError):
    def __init__(self, name: str, first: str, second: str):
        super().__init__(
            f"found duplicate name {name}: produced by both {first} and {second}. "
            f"Use propertyMap on one of the used resources to rename the variable"
        )
        self.name = name
        self.first = first
        self.second = second


class ClusterApiError(DeployError):
    def __init__(self, action: str, kind: str, name: str, namespace: Optional[str], status: Optional[int],
                 reason: str):
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"failed to {action} {kind} {where}: ({status}) {reason}")
        self.action = action
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.status = status
        self.reason = reason
        if status and 400 <= status < 600:
            self.status_code = status

    @property
    def conflict(self) -> bool:
        return self.status == 409

    @property
    def retryable(self) -> bool:
        return self.conflict


class ReconcileError(DeployError):

    def __init__(self, cause: DeployError, result):
        super().__init__(str(cause))
        self.cause = cause
        self.result = result
        self.status_code = cause.status_code
