#!/usr/bin/env python3

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, List, Sequence

import requests
from dotenv import load_dotenv

from pipeline_config import ConfigError, PipelineConfig, load_config
from pipeline_utils import (FAILED, SKIPPED, SUCCESS, ItemOutcome, StageResult, WriteStreamError,
                            configure_logging, prepare_output_directory)
from sf_connection import (DEFAULT_LOGIN_URL, AuthenticationError, Connection, FieldDescriptor,
                           QueryStreamError, describe_fields, login)

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def build_query(object_name: str, field_names: Sequence[str], years: int = 2) -> str:
    """SOQL selecting every field for records created in the last `years` years"""
    return f"SELECT {','.join(field_names)} FROM {object_name} WHERE CreatedDate = LAST_N_YEARS:{years}"


def write_field_descriptions(object_name: str, fields: List[FieldDescriptor], directory: Path) -> Path:
    """Persist the field -> inline help text mapping for one object."""
    descriptions = {f.name: f.inline_help_text for f in fields}
    path = Path(directory) / f"{object_name}.json"
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(descriptions, f, indent=2)
    except OSError as e:
        raise WriteStreamError(f"Error writing field descriptions for {object_name}: {e}") from e
    return path


def stream_to_file(chunks: Iterable[bytes], path: Path) -> int:
    """Write a byte stream to disk as it arrives.

    Returns only once the source is drained and the file is flushed and
    synced. Source failures surface as QueryStreamError, destination failures
    as WriteStreamError; a partial file is removed either way.
    """
    path = Path(path)
    written = 0
    try:
        with open(path, 'wb') as out:
            for chunk in chunks:
                out.write(chunk)
                written += len(chunk)
            out.flush()
            os.fsync(out.fileno())
    except QueryStreamError:
        path.unlink(missing_ok=True)
        raise
    # RequestException subclasses OSError, so it has to be matched first
    except requests.RequestException as e:
        path.unlink(missing_ok=True)
        raise QueryStreamError(f"Record stream for {path.name} broke: {e}") from e
    except OSError as e:
        path.unlink(missing_ok=True)
        raise WriteStreamError(f"Error writing to {path}: {e}") from e
    return written


def fetch_object_records(connection: Connection, object_name: str, field_names: Sequence[str],
                         config: PipelineConfig) -> Path:
    """Run the bulk query for one object and stream the CSV into the records folder"""
    query = build_query(object_name, field_names, config.created_within_years)
    logger.info(f"Querying {object_name} with {len(field_names)} fields")
    logger.debug(f"Query: {query}")

    path = config.records_path / f"{object_name}.csv"
    size = stream_to_file(connection.bulk.query(query).stream(), path)
    logger.info(f"Records for {object_name} written to {path} ({size:,d} bytes)")
    return path


def extract_object(connection: Connection, object_name: str, config: PipelineConfig) -> ItemOutcome:
    """Describe one object, save its field descriptions, then dump its records."""
    fields = describe_fields(connection, object_name)
    write_field_descriptions(object_name, fields, config.field_descriptions_path)

    # Nothing useful to query without fields
    if not fields:
        logger.warning(f"No fields returned for {object_name}, skipping record extraction")
        return ItemOutcome(object_name, SKIPPED)

    path = fetch_object_records(connection, object_name, [f.name for f in fields], config)
    return ItemOutcome(object_name, SUCCESS, output_path=path)


def extract(connection: Connection, object_names: Sequence[str], config: PipelineConfig) -> StageResult:
    """Extract field descriptions and records for each object, one at a time.

    A failure on one object is logged and recorded; the remaining objects
    are still processed.
    """
    result = StageResult("extract")
    prepare_output_directory(config.field_descriptions_path)
    prepare_output_directory(config.records_path)

    connection.bulk.poll_timeout = config.poll_timeout
    connection.bulk.poll_interval = config.poll_interval

    for object_name in object_names:
        logger.info(f"Dumping data for {object_name}...")
        try:
            result.add(extract_object(connection, object_name, config))
        except (QueryStreamError, WriteStreamError) as e:
            logger.error(f"Error extracting {object_name}: {e}")
            result.add(ItemOutcome(object_name, FAILED, error=e))
        except Exception as e:
            logger.exception(f"Unexpected error extracting {object_name}")
            result.add(ItemOutcome(object_name, FAILED, error=e))

    logger.info(f"Data dump complete. {result.summary()}")
    return result


def parse_object_names(raw: str) -> List[str]:
    """Split a comma-separated object list, dropping blanks and duplicates"""
    names = []
    for name in (raw or "").split(','):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


def add_credential_arguments(parser: argparse.ArgumentParser) -> None:
    """Credential flags; each can fall back to an SF_* environment variable."""
    def env_option(flags, env_var, help_text, default=None):
        value = os.getenv(env_var, default)
        parser.add_argument(*flags, default=value, required=value is None,
                            help=f"{help_text} (env: {env_var})")

    env_option(('--username', '-u'), 'SF_USERNAME', 'Salesforce username')
    env_option(('--password', '-p'), 'SF_PASSWORD', 'Salesforce password')
    env_option(('--objects', '-o'), 'SF_OBJECTS', 'Comma-separated list of Salesforce objects to analyze')
    env_option(('--url', '-l'), 'SF_LOGIN_URL', 'Salesforce environment url')
    env_option(('--security-token', '-s'), 'SF_SECURITY_TOKEN',
               'Salesforce security token that will be added to the end of the password')


def parse_args(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description='Download Salesforce object records and field descriptions via the Bulk API')
    add_credential_arguments(parser)
    parser.add_argument('--config', '-c', type=str, default=None,
                        help='Path to the pipeline config JSON (default: config.json in the working directory)')
    return parser.parse_args(argv)


def connect(args, config: PipelineConfig) -> Connection:
    return login(args.username, args.password + args.security_token,
                 args.url or DEFAULT_LOGIN_URL, api_version=config.api_version)


def main(argv=None):
    """Main entry point for the script"""
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    configure_logging(config.log_level)

    objects = parse_object_names(args.objects)
    if not objects:
        logger.error("No objects specified")
        sys.exit(1)

    try:
        connection = connect(args, config)
        result = extract(connection, objects, config)
    except AuthenticationError as e:
        logger.error(f"Login failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.error("Process interrupted by user. Exiting.")
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error during extraction")
        sys.exit(1)

    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
