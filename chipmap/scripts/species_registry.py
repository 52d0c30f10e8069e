#!/usr/bin/env python3
"""
species_registry.py

Species registry for chipmap.

Single source of truth for which species the pipeline accepts and which
prebuilt Bowtie2 genome index each one aligns against. The index locations
themselves are site-specific and live in the configuration under
``reference_data``; this module only maps a species to its configuration
key and builds the immutable per-run configuration.

Accepted species are matched exactly ("human", "mouse"). Anything else is
rejected before any external tool runs.
"""

import logging
from types import MappingProxyType
from typing import Mapping, NamedTuple, TypedDict

# Thread count handed to bowtie2 and sambamba.
DEFAULT_THREADS = 6


class SpeciesMetadataDict(TypedDict):
    """Type definition for species metadata dictionary."""

    index_key: str
    assembly: str
    release: int
    description: str


SPECIES_METADATA: dict[str, SpeciesMetadataDict] = {
    "human": {
        "index_key": "bowtie2_index_human",
        "assembly": "GRCh38",
        "release": 97,
        "description": "ENSEMBL GRCh38 release 97 primary assembly",
    },
    "mouse": {
        "index_key": "bowtie2_index_mouse",
        "assembly": "GRCm38",
        "release": 97,
        "description": "ENSEMBL GRCm38 release 97 primary assembly",
    },
}


class UnsupportedSpeciesError(ValueError):
    """Raised when a species outside the registry is requested."""


class RunConfig(NamedTuple):
    """Configuration resolved once per run and shared by every stage."""

    species: str
    genome_index: str
    adapter_file: str
    tools: Mapping[str, str]
    threads: int = DEFAULT_THREADS


def list_species() -> list[str]:
    """Return the accepted species names, sorted."""
    return sorted(SPECIES_METADATA)


def normalize_species(user_input: str) -> str:
    """
    Validate a species name against the registry.

    Args:
        user_input (str): Species as given on the command line.

    Returns:
        str: The canonical species name.

    Raises:
        UnsupportedSpeciesError: If the species is not in the registry.
    """
    if user_input not in SPECIES_METADATA:
        supported = " or ".join(sorted(SPECIES_METADATA, reverse=True))
        logging.error(f"Unsupported species '{user_input}'")
        raise UnsupportedSpeciesError(
            f"Unsupported species '{user_input}': the pipeline only accepts "
            f"<species> of {supported}, no others."
        )
    return user_input


def get_species_metadata(species: str) -> SpeciesMetadataDict:
    """Return the registry entry for ``species``."""
    return SPECIES_METADATA[normalize_species(species)]


def get_genome_index(species: str, config: dict) -> str:
    """
    Resolve the Bowtie2 genome index prefix for a species.

    The index is not checked on disk; a missing index makes the align stage fail.

    Raises:
        UnsupportedSpeciesError: If the species is not in the registry.
        KeyError: If the configuration lacks the species' index entry.
    """
    index_key = get_species_metadata(species)["index_key"]
    try:
        return config["reference_data"][index_key]
    except KeyError:
        logging.error(f"Missing genome index '{index_key}' in configuration under 'reference_data'.")
        raise


def resolve_run_config(species: str, config: dict) -> RunConfig:
    """
    Build the immutable run configuration for one pipeline invocation.

    Args:
        species (str): Species from the command line.
        config (dict): Loaded configuration.

    Returns:
        RunConfig: Species, genome index, adapter file and tool commands.

    Raises:
        UnsupportedSpeciesError: If the species is not in the registry.
        KeyError: If a required configuration entry is missing.
    """
    species = normalize_species(species)
    genome_index = get_genome_index(species, config)
    try:
        adapter_file = config["adapters"]["trimmomatic_se"]
        tools = dict(config["tools"])
    except KeyError as e:
        logging.error(f"Missing configuration entry: {e}")
        raise

    missing_tools = [t for t in ("fastqc", "trimmomatic", "bowtie2", "samtools", "sambamba") if t not in tools]
    if missing_tools:
        logging.error(f"Missing tool commands in configuration: {missing_tools}")
        raise KeyError(f"Missing tool commands in configuration: {missing_tools}")

    logging.info(
        f"Species '{species}' selected: {SPECIES_METADATA[species]['description']} "
        f"(index {genome_index})"
    )
    return RunConfig(
        species=species,
        genome_index=genome_index,
        adapter_file=adapter_file,
        tools=MappingProxyType(tools),
    )
