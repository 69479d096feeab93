"""
CLI for operators of the achievement ledger
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from config.settings import Settings, get_settings
from ledger.database import DatabaseManager
from ledger.exceptions import LedgerError
from ledger.models import CertificateFilter, CertificateRequest, CertificateStatus
from ledger.service import CertificateService, download_filename, get_certificate_service


class CertificateCLI:
    """CLI for issuing and checking certificates"""

    def __init__(self, service: Optional[CertificateService] = None,
                 db_manager: Optional[DatabaseManager] = None,
                 settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._service = service
        self._db_manager = db_manager
        self.setup_logging()

    def setup_logging(self):
        """Logging setup"""
        self.settings.create_directories()
        logging.basicConfig(
            level=getattr(logging, self.settings.log_level),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.FileHandler(self.settings.log_file.with_name('cli.log')),
                logging.StreamHandler()
            ]
        )
        self.logger = logging.getLogger(__name__)

    @property
    def service(self) -> CertificateService:
        if self._service is None:
            self._service = get_certificate_service()
        return self._service

    @property
    def db_manager(self) -> DatabaseManager:
        if self._db_manager is None:
            self._db_manager = DatabaseManager(self.settings.database_url)
        return self._db_manager

    def init_db(self, args):
        """Creates tables and reference data"""
        self.db_manager.create_tables()
        self.db_manager.seed_reference_data()
        print("✓ Database initialized")

    def issue_certificate(self, args):
        """Issues a certificate and waits for its PDF"""
        request = CertificateRequest(
            student_id=args.student_id,
            achievement_ids=args.achievement_ids,
            valid_until=args.valid_until,
            notes=args.notes or "",
        )
        detail = self.service.create_certificate(request, issued_by=args.issued_by)
        self.service.runner.join()

        print("✓ Certificate issued:")
        print(f"  ID: {detail.id}")
        print(f"  Number: {detail.certificate_number}")
        print(f"  Student: {detail.student.full_name} ({detail.student.nisn})")
        print(f"  Achievements: {len(detail.achievements)}")
        print(f"  Token: {detail.qr_token}")
        self.logger.info(f"Issued certificate {detail.certificate_number}")

    def revoke_certificate(self, args):
        """Revokes a certificate"""
        self.service.revoke_certificate(args.certificate_id)
        print(f"✓ Certificate {args.certificate_id} revoked")

    def verify_certificate(self, args):
        """Checks a verification token"""
        result = self.service.verify_certificate(args.token)
        mark = "✓" if result.is_valid else "✗"
        print(f"{mark} {result.message}")
        if result.certificate:
            print(f"  Number: {result.certificate.certificate_number}")
            print(f"  Student: {result.certificate.student_name}")
            print(f"  Issued: {result.certificate.issued_at.strftime('%d.%m.%Y %H:%M')}")
            print(f"  Status: {result.certificate.status.value}")
        for achievement in result.achievements or []:
            print(f"  - {achievement.year} {achievement.competition_name} ({achievement.rank or '-'})")

    def download_certificate(self, args):
        """Writes the certificate PDF to a file"""
        pdf_bytes, certificate_number = self.service.download_pdf(args.certificate_id)
        output = Path(args.output) if args.output else Path(download_filename(certificate_number))
        output.write_bytes(pdf_bytes)
        print(f"✓ Saved {output} ({len(pdf_bytes)} bytes)")

    def list_certificates(self, args):
        """Certificate list"""
        certificate_filter = CertificateFilter(
            student_id=args.student_id,
            status=CertificateStatus(args.status) if args.status else None,
            page=args.page,
            per_page=args.per_page,
        )
        items, pagination = self.service.list_certificates(certificate_filter)

        if not items:
            print("  No certificates found")
            return

        for item in items:
            print(f"  {item.certificate_number}  {item.status.value:<8} {item.student_name}  {item.id}")
        print(f"Page {pagination.page}/{pagination.total_pages}, {pagination.total_items} total")

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Achievement certificates (Surat Keterangan Prestasi)",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  %(prog)s init-db
  %(prog)s issue --student-id <uuid> --achievement-id <uuid> --achievement-id <uuid>
  %(prog)s revoke <certificate-id>
  %(prog)s verify <token>
  %(prog)s download <certificate-id> -o skp.pdf
  %(prog)s list --status active
            """
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        subparsers.add_parser('init-db', help='Create tables and reference data')

        issue_parser = subparsers.add_parser('issue', help='Issue a certificate')
        issue_parser.add_argument('--student-id', required=True, help='Student UUID')
        issue_parser.add_argument('--achievement-id', dest='achievement_ids', action='append',
                                  required=True, help='Achievement UUID, repeatable')
        issue_parser.add_argument('--valid-until', help='Expiry date (YYYY-MM-DD)')
        issue_parser.add_argument('--notes', help='Notes')
        issue_parser.add_argument('--issued-by', help='Operator UUID')

        revoke_parser = subparsers.add_parser('revoke', help='Revoke a certificate')
        revoke_parser.add_argument('certificate_id', help='Certificate UUID')

        verify_parser = subparsers.add_parser('verify', help='Verify a token')
        verify_parser.add_argument('token', help='Verification token')

        download_parser = subparsers.add_parser('download', help='Save the certificate PDF')
        download_parser.add_argument('certificate_id', help='Certificate UUID')
        download_parser.add_argument('-o', '--output', help='Output file')

        list_parser = subparsers.add_parser('list', help='List certificates')
        list_parser.add_argument('--student-id', help='Filter by student UUID')
        list_parser.add_argument('--status', choices=[s.value for s in CertificateStatus], help='Filter by status')
        list_parser.add_argument('--page', type=int, default=1)
        list_parser.add_argument('--per-page', type=int, default=10)

        return parser

    def main(self, argv=None) -> int:
        """CLI entry point"""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 0

        commands = {
            'init-db': self.init_db,
            'issue': self.issue_certificate,
            'revoke': self.revoke_certificate,
            'verify': self.verify_certificate,
            'download': self.download_certificate,
            'list': self.list_certificates,
        }

        try:
            commands[args.command](args)
        except LedgerError as e:
            print(f"✗ {e}")
            self.logger.error(f"Command {args.command} failed: {e}")
            return 1
        return 0


def main() -> int:
    return CertificateCLI().main()


if __name__ == '__main__':
    sys.exit(main())
