import os
import sys
import logging
from pathlib import Path

LOG_LEVEL_ENV = 'PDF_COMPRESSOR_LOG_LEVEL'
LOG_FILE_ENV = 'PDF_COMPRESSOR_LOG_FILE'


def setup_logging():
    """Set up logging to file and console"""
    log_file = Path(os.environ.get(LOG_FILE_ENV) or Path.home() / 'pdf_compressor_log.txt')
    level = getattr(logging, os.environ.get(LOG_LEVEL_ENV, 'DEBUG').upper(), logging.DEBUG)

    handlers = [logging.StreamHandler(sys.stdout)]
    try:
        handlers.insert(0, logging.FileHandler(log_file))
    except OSError as e:
        print(f"Cannot write log file {log_file}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )

    logging.info('Starting PDF compressor')
    logging.info(f'Python version: {sys.version}')
    logging.info(f'Current working directory: {os.getcwd()}')
    return log_file


def main():
    setup_logging()
    try:
        from pdf_compressor import PDFCompressorApp, QApplication, DependencyChecker
        from ghostscript_job import find_ghostscript

        logging.info('Checking dependencies...')
        gs = find_ghostscript()
        if not DependencyChecker.check_ghostscript(gs):
            logging.warning(f'Ghostscript ({gs}) not found. Compression will fail until it is installed.')

        logging.info('Creating application...')
        app = QApplication(sys.argv)
        window = PDFCompressorApp()
        window.show()

        logging.info('Starting event loop...')
        sys.exit(app.exec())
    except Exception as e:
        logging.error(f'Fatal error: {str(e)}')
        raise


if __name__ == '__main__':
    main()
