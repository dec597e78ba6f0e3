import logging
from typing import List

from ..config import ssh_option_args
from ..handshake import HandshakeRequest, TargetKind
from .pty_process import PtyProcessAdapter

logger = logging.getLogger(__name__)


class RemoteHostShellAdapter(PtyProcessAdapter):
    """Interactive shell on a lab VM through the local ssh client."""

    kind = TargetKind.REMOTE_HOST_SHELL

    def build_command(self, request: HandshakeRequest) -> List[str]:
        return [
            self.config.ssh_binary,
            *ssh_option_args(self.config.remote_host_ssh_options),
            f"{self.config.remote_host_user}@{self.target}",
        ]

    async def _start(self, request: HandshakeRequest) -> None:
        if "StrictHostKeyChecking=no" in self.config.remote_host_ssh_options:
            logger.warning("Host key verification disabled for ssh to %s", self.target)
        await super()._start(request)
