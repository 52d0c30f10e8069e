"""
alignment_stats.py

Read-level statistics of the final uniquely-mapped BAM.

The filter stage is delegated to sambamba; these counts make its effect
visible in the run summary and flag a final BAM that still holds reads the
unique-read filter should have removed.
"""

import json
import logging

import pysam


def summarize_bam(bam_path):
    """
    Count reads in a BAM file by the categories the unique-read filter uses.

    Args:
        bam_path (str): Path to a BAM file.

    Returns:
        dict: Counts for total, mapped, unmapped, duplicate, multi_mapped
            (carrying an XS tag) and unique (passing all three criteria).

    Raises:
        ValueError: If the file cannot be opened as BAM.
    """
    counts = {
        "total": 0,
        "mapped": 0,
        "unmapped": 0,
        "duplicate": 0,
        "multi_mapped": 0,
        "unique": 0,
    }
    try:
        bam = pysam.AlignmentFile(bam_path, "rb", check_sq=False)
    except (OSError, ValueError) as e:
        logging.error(f"Cannot open BAM file {bam_path}: {e}")
        raise ValueError(f"Cannot open BAM file {bam_path}: {e}") from e

    with bam:
        for read in bam.fetch(until_eof=True):
            counts["total"] += 1
            if read.is_unmapped:
                counts["unmapped"] += 1
            else:
                counts["mapped"] += 1
            if read.is_duplicate:
                counts["duplicate"] += 1
            has_xs = read.has_tag("XS")
            if has_xs:
                counts["multi_mapped"] += 1
            if not (has_xs or read.is_unmapped or read.is_duplicate):
                counts["unique"] += 1

    logging.info(
        f"{bam_path}: {counts['total']} reads, {counts['unique']} uniquely mapped, "
        f"{counts['multi_mapped']} multi-mapped, {counts['duplicate']} duplicates, "
        f"{counts['unmapped']} unmapped"
    )
    if counts["unique"] != counts["total"]:
        logging.warning(f"{bam_path} contains {counts['total'] - counts['unique']} reads failing the unique-read filter")
    return counts


def write_bam_stats(bam_path, stats_path):
    """
    Summarize ``bam_path`` and write the counts as JSON to ``stats_path``.

    Returns:
        dict: The counts written.
    """
    counts = summarize_bam(bam_path)
    with open(stats_path, "w", encoding="utf-8") as f:
        json.dump({"bam": str(bam_path), "counts": counts}, f, indent=4)
    logging.info(f"Alignment statistics written to {stats_path}")
    return counts
