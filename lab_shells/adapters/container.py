from typing import List

from ..handshake import HandshakeRequest, TargetKind
from .pty_process import PtyProcessAdapter


class ContainerExecAdapter(PtyProcessAdapter):
    """Interactive shell inside a running lab container via `<runtime> exec -it`."""

    kind = TargetKind.CONTAINER_EXEC

    def build_command(self, request: HandshakeRequest) -> List[str]:
        return [
            self.config.container_runtime,
            "exec",
            "-it",
            self.target,
            self.config.container_shell,
        ]
