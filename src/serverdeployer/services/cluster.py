"""Cluster access services for ServerDeployer.

Everything touching the Kubernetes API goes through ``kubectl`` and ``helm``
subprocesses, the same way the rest of the tool drives external programs.
"""

import base64
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

from serverdeployer.constants import DEFAULT_POLL_INTERVAL
from serverdeployer.errors import DeployerError, JobFailedError, WaitTimeoutError
from serverdeployer.errors_catalog import actionable_error
from serverdeployer.models import ClusterInfo


def _to_int(value: Optional[str]) -> int:
    try:
        return int((value or "").strip() or "0")
    except ValueError:
        return 0


class KubectlClient:
    """Applies, polls and deletes cluster objects."""

    def __init__(
        self,
        run_cmd: Callable,
        logger,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.run_cmd = run_cmd
        self.logger = logger
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    @staticmethod
    def _scope(namespace: Optional[str]) -> List[str]:
        return ["-n", namespace] if namespace else []

    def _output(self, *args: str) -> Optional[str]:
        result = self.run_cmd(["kubectl", *args], check=False, capture_output=True)
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip()

    def apply(self, objects: Iterable[Dict[str, Any]], error_message: str):
        documents = yaml.safe_dump_all(list(objects), sort_keys=False)
        try:
            self.run_cmd(
                ["kubectl", "apply", "-f", "-"],
                check=True,
                capture_output=True,
                input_text=documents,
            )
        except DeployerError as exc:
            raise DeployerError(f"{error_message}: {exc}") from exc

    def recreate(self, obj: Dict[str, Any], error_message: str):
        """Replaces an immutable object (pod, job) by deleting it first."""
        metadata = obj["metadata"]
        self.delete(obj["kind"].lower(), metadata.get("namespace"), metadata["name"])
        self.apply([obj], error_message)

    def exists(self, kind: str, namespace: Optional[str], name: str) -> bool:
        return self._output("get", kind, *self._scope(namespace), name, "-o", "name") is not None

    def delete(self, kind: str, namespace: Optional[str], name: str):
        self.run_cmd(
            ["kubectl", "delete", kind, *self._scope(namespace), name, "--ignore-not-found", "--wait=true"],
            check=True,
            capture_output=True,
        )

    def get_logs(self, namespace: str, pod_name: str) -> str:
        result = self.run_cmd(
            ["kubectl", "logs", "-n", namespace, pod_name],
            check=True,
            capture_output=True,
        )
        return result.stdout or ""

    def get_secret_value(self, namespace: str, name: str, key: str) -> str:
        escaped_key = key.replace(".", "\\.")
        encoded = self._output(
            "get", "secret", "-n", namespace, name, "-o", f"jsonpath={{.data.{escaped_key}}}"
        )
        if not encoded:
            raise DeployerError(f"Secret {name} has no '{key}' value.")
        return base64.b64decode(encoded).decode("utf-8")

    def scale_to(self, namespace: str, selector: str, replicas: int):
        self.run_cmd(
            ["kubectl", "scale", "deploy", "-n", namespace, "-l", selector, f"--replicas={replicas}"],
            check=True,
            capture_output=True,
        )

    def list_pods(self, namespace: str, selector: str) -> List[str]:
        output = self._output("get", "pod", "-n", namespace, "-l", selector, "-o", "name")
        if output is None:
            raise DeployerError(f"Failed to list the pods matching {selector}.")
        return output.split()

    def create_namespace(self, namespace: str):
        self.apply(
            [{"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}],
            f"failed to create namespace {namespace}",
        )

    def has_volume(self, namespace: str, name: str) -> bool:
        return self._output("get", "pvc", "-n", namespace, name, "-o", "jsonpath={.status.phase}") == "Bound"

    def get_deployment_image(self, namespace: str, name: str) -> str:
        image = self._output(
            "get",
            "deploy",
            "-n",
            namespace,
            name,
            "-o",
            "jsonpath={.spec.template.spec.containers[0].image}",
        )
        return image or ""

    def get_cluster_info(self) -> ClusterInfo:
        kubelet_version = self._output(
            "get", "node", "-o", "jsonpath={.items[0].status.nodeInfo.kubeletVersion}"
        )
        if kubelet_version is None:
            raise DeployerError("Failed to get the cluster nodes. Is kubectl configured?")

        controllers = self._output("get", "ingressclass", "-o", "jsonpath={.items[*].spec.controller}") or ""
        ingress = ""
        if "traefik" in controllers:
            ingress = "traefik"
        elif "nginx" in controllers:
            ingress = "nginx"
        self.logger.debug("Detected kubelet %s with ingress '%s'", kubelet_version, ingress)
        return ClusterInfo(kubelet_version=kubelet_version, ingress=ingress)

    def wait_until(self, predicate: Callable[[], bool], timeout: Optional[float], description: str):
        """Polls ``predicate``; a ``None`` or negative timeout never expires."""
        unbounded = timeout is None or timeout < 0
        deadline = None if unbounded else self.clock() + timeout
        while True:
            if predicate():
                return
            if deadline is not None and self.clock() >= deadline:
                raise WaitTimeoutError(f"Timed out after {timeout}s waiting for {description}.")
            self.sleep(self.poll_interval)

    def wait_for_job(self, namespace: str, name: str, timeout: Optional[float]):
        def finished() -> bool:
            status = self._output(
                "get", "job", "-n", namespace, name, "-o", "jsonpath={.status.succeeded},{.status.failed}"
            )
            succeeded, _, failed = (status or ",").partition(",")
            if _to_int(failed) > 0:
                raise JobFailedError(actionable_error("job_failed", name=name, namespace=namespace))
            return _to_int(succeeded) > 0

        self.wait_until(finished, timeout, f"job {name}")

    def wait_for_pod(self, namespace: str, name: str, timeout: Optional[float]):
        """Waits for a run-once pod to terminate successfully."""

        def completed() -> bool:
            phase = self._output("get", "pod", "-n", namespace, name, "-o", "jsonpath={.status.phase}")
            if phase == "Failed":
                raise DeployerError(f"Pod {name} failed.")
            return phase == "Succeeded"

        self.wait_until(completed, timeout, f"pod {name}")

    def wait_for_object_ready(self, kind: str, namespace: str, name: str, timeout: Optional[float]):
        def ready() -> bool:
            status = self._output(
                "get",
                kind,
                "-n",
                namespace,
                name,
                "-o",
                'jsonpath={.status.conditions[?(@.type=="Ready")].status}',
            )
            return status == "True"

        self.wait_until(ready, timeout, f"{kind} {name} to be ready")

    def wait_for_running_deployment(self, namespace: str, name: str, timeout: Optional[float] = None):
        def running() -> bool:
            ready = self._output("get", "deploy", "-n", namespace, name, "-o", "jsonpath={.status.readyReplicas}")
            return _to_int(ready) > 0

        self.wait_until(running, timeout, f"deployment {name} to have a running pod")

    def wait_for_deployments(self, namespace: str, names: List[str], timeout: Optional[float] = None):
        for name in names:

            def available(deployment: str = name) -> bool:
                status = self._output(
                    "get",
                    "deploy",
                    "-n",
                    namespace,
                    deployment,
                    "-o",
                    "jsonpath={.spec.replicas},{.status.readyReplicas}",
                )
                wanted, _, ready = (status or ",").partition(",")
                return status is not None and _to_int(ready) >= _to_int(wanted)

            self.logger.info("Waiting for deployment %s to be ready...", name)
            self.wait_until(available, timeout, f"deployment {name}")

    def wait_for_no_pods(self, namespace: str, selector: str, timeout: Optional[float]):
        """Waits until every pod matching ``selector`` is gone, terminating ones included."""
        self.wait_until(
            lambda: not self.list_pods(namespace, selector), timeout, f"pods {selector} to terminate"
        )

    def wait_for_secret(self, namespace: str, name: str, timeout: Optional[float]):
        self.wait_until(lambda: self.exists("secret", namespace, name), timeout, f"secret {name}")


class HelmClient:
    """Installs charts for cluster add-ons."""

    def __init__(self, run_cmd: Callable, logger):
        self.run_cmd = run_cmd
        self.logger = logger

    def upgrade_install(
        self,
        kubeconfig: str,
        namespace: str,
        release: str,
        chart: str,
        version: str = "",
        values_file: str = "",
        args: Iterable[str] = (),
    ):
        cmd = ["helm", "upgrade", "--install", release, chart, "-n", namespace, "--create-namespace", "--wait"]
        if kubeconfig:
            cmd.extend(["--kubeconfig", kubeconfig])
        if version:
            cmd.extend(["--version", version])
        if values_file:
            cmd.extend(["-f", values_file])
        cmd.extend(args)

        self.logger.info("Installing %s helm chart in namespace %s", release, namespace)
        self.run_cmd(cmd, check=True, capture_output=True)
