"""Local TLS material: helper-script certificates and the mkcert wildcard certificate."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from local_setup.logs import BootstrapError
from local_setup.runner import CommandRunner

CERT_DOMAINS = (
    "*.dev.local",
    "*.portal.dev.local",
    "*.services.portal.dev.local",
    "oci-registry-docker-registry.registry.svc.cluster.local",
)


@dataclass(frozen=True)
class CertificateBundle:
    cert: Path
    key: Path
    ca: Path


class CertificateManager:
    def __init__(
        self,
        runner: CommandRunner,
        logger: logging.Logger,
        certs_dir: Path,
        gen_certs_script: Path,
    ) -> None:
        self.runner = runner
        self.logger = logger
        self.certs_dir = certs_dir
        self.gen_certs_script = gen_certs_script

    def clear(self) -> None:
        if self.certs_dir.is_dir():
            self.logger.info(f"[Certs] Clearing existing certs directory path={self.certs_dir}")
            shutil.rmtree(self.certs_dir)

    def generate_helper_certs(self) -> None:
        if not self.gen_certs_script.is_file():
            raise BootstrapError(f"[Certs] Certificate helper {self.gen_certs_script} does not exist")
        self.logger.info(f"[Certs] Generating certificates script={self.gen_certs_script.name}")
        self.runner.run([str(self.gen_certs_script)])

    def issue_domain_certificate(self, mkcert_cmd: str) -> CertificateBundle:
        """Issue the wildcard certificate for the local domains and copy the mkcert root CA next to it."""
        self.certs_dir.mkdir(parents=True, exist_ok=True)
        bundle = CertificateBundle(
            cert=self.certs_dir / "cert.crt",
            key=self.certs_dir / "cert.key",
            ca=self.certs_dir / "ca.crt",
        )

        self.logger.info(f"[Certs] Issuing domain certificate domains={','.join(CERT_DOMAINS)}")
        self.runner.run(
            [mkcert_cmd, f"-cert-file={bundle.cert}", f"-key-file={bundle.key}", *CERT_DOMAINS],
            capture_output=True,
        )

        caroot = self.runner.run([mkcert_cmd, "-CAROOT"], capture_output=True).stdout.strip()
        root_ca = Path(caroot) / "rootCA.pem"
        if not caroot or not root_ca.is_file():
            raise BootstrapError(f"[Certs] mkcert root CA not found path={root_ca} action=run-mkcert-install")
        bundle.ca.write_text(root_ca.read_text(encoding="utf-8"), encoding="utf-8")
        return bundle
