import os
import json
import html
import logging
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
REPORT_FILE = "report.html"

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Historical Imagery: {{LOCATION}}</title>
<style>
  body { font-family: Arial, sans-serif; margin: 20px; color: #333; }
  .summary p { margin: 4px 0; }
  .timeline { position: relative; height: 40px; margin: 30px 0; border-bottom: 3px solid #888; }
  .marker { position: absolute; bottom: -9px; width: 14px; height: 14px; margin-left: -7px;
            border-radius: 50%; background: #1a73e8; cursor: pointer; }
  .marker span { position: absolute; bottom: 18px; left: -30px; width: 80px;
                 font-size: 11px; text-align: center; }
  .gallery { display: flex; flex-direction: column; gap: 30px; }
  .card { border-bottom: 1px solid #ccc; padding-bottom: 20px; }
  .card.highlight { background: #eef4ff; }
  .card img { max-width: 100%; }
  .card img.date-display { border: 2px solid red; margin-top: 10px; max-width: 300px; }
  .empty { font-style: italic; }
</style>
</head>
<body>
<h1>Historical Imagery Results</h1>
<div class="summary">
  <p>Location: {{LOCATION}}</p>
  <p>Coordinates: {{COORDINATES}}</p>
  <p>Captured: {{STARTED_AT}}</p>
  <p>Target years: {{TARGET_RANGE}}</p>
  <p>Observed range: {{ACTUAL_RANGE}}</p>
  <p>Status: {{STATUS}}</p>
  <p>Total unique images: {{COUNT}}</p>
</div>
<div class="timeline">{{MARKERS}}</div>
<div class="gallery">{{CARDS}}</div>
<script>
  document.querySelectorAll('.marker').forEach(function (marker) {
    marker.addEventListener('click', function () {
      var card = document.getElementById(marker.dataset.target);
      document.querySelectorAll('.card').forEach(function (c) { c.classList.remove('highlight'); });
      card.classList.add('highlight');
      card.scrollIntoView({ behavior: 'smooth' });
    });
  });
</script>
</body>
</html>
"""

_CARD_TEMPLATE = """
<div class="card" id="image-{index}">
  <h2>Historical Image {number}: {date}</h2>
  <p>Estimated year: {year}</p>
  <p>OCR text: {ocr}</p>
  <p>Timeline position: {sequence} (X: {pixel_x})</p>
  <img src="{image}" alt="Historical Image {number}">
  <h3>Date Display:</h3>
  <img class="date-display" src="{crop}" alt="Date Display {number}">
</div>"""

_MARKER_TEMPLATE = (
    '<div class="marker" style="left: {left:.2f}%" data-target="image-{index}"'
    ' title="{date}"><span>{date}</span></div>'
)


class SessionReport:
    """
    Turn a finished, or failed, capture session into files on disk.

    Only unique frames are reported, in scan order. The observed date range
    is the first and last of those in scan order, not calendar order.
    """

    def __init__(self, session, scan_start_x, scan_end_x, calibration=None):
        self.session = session
        self.scan_start_x = scan_start_x
        self.scan_end_x = scan_end_x
        self.calibration = calibration

    def unique_samples(self):
        return list(enumerate(self.session.unique_samples))

    def image_filename(self, sample):
        # Samples sharing a date key share a file; the later one wins
        return f"{self.session.safe_label}_{sample.date_key}.png"

    def crop_filename(self, sample):
        return f"date_display_{sample.sequence_index}.png"

    def timeline_offset(self, pixel_x):
        return (pixel_x - self.scan_start_x) / (self.scan_end_x - self.scan_start_x)

    def actual_year_range(self):
        unique = self.session.unique_samples
        if not unique:
            return None
        return f"{unique[0].date_key} to {unique[-1].date_key}"

    def build_metadata(self):
        session = self.session
        images = [
            {
                "index": index,
                "sequenceIndex": sample.sequence_index,
                "pixelX": sample.pixel_x,
                "estimatedYear": sample.estimated_year,
                "date": sample.date_key,
                "ocrDate": sample.resolved_date,
                "rawOcrText": sample.raw_ocr_text,
                "image": self.image_filename(sample),
                "dateDisplay": self.crop_filename(sample),
            }
            for index, sample in self.unique_samples()
        ]
        metadata = {
            "location": session.location_label,
            "coordinates": list(session.coordinates),
            "startedAt": session.started_at.isoformat(),
            "endedAt": session.ended_at.isoformat() if session.ended_at else None,
            "durationSeconds": session.duration,
            "status": session.status,
            "error": session.error,
            "targetYearRange": list(session.target_year_range),
            "actualYearRange": self.actual_year_range(),
            "totalSamples": len(session.samples),
            "capturedImages": len(images),
            "scanRange": [self.scan_start_x, self.scan_end_x],
            "images": images,
        }
        if self.calibration is not None:
            metadata["calibration"] = {
                "startX": self.calibration.start_x,
                "endX": self.calibration.end_x,
                "startYear": self.calibration.start_year,
                "endYear": self.calibration.end_year,
            }
        return metadata

    def render_html(self):
        session = self.session
        esc = html.escape
        cards = []
        markers = []
        for index, sample in self.unique_samples():
            cards.append(_CARD_TEMPLATE.format(
                index=index,
                number=index + 1,
                date=esc(sample.date_key),
                year=sample.estimated_year,
                ocr=esc(sample.raw_ocr_text or "Unknown"),
                sequence=sample.sequence_index,
                pixel_x=sample.pixel_x,
                image=esc(self.image_filename(sample)),
                crop=esc(self.crop_filename(sample)),
            ))
            markers.append(_MARKER_TEMPLATE.format(
                left=self.timeline_offset(sample.pixel_x) * 100,
                index=index,
                date=esc(sample.date_key),
            ))
        if not cards:
            cards.append('<p class="empty">No unique historical images were found.</p>')

        start_year, end_year = session.target_year_range
        replacements = {
            "{{LOCATION}}": esc(session.location_label),
            "{{COORDINATES}}": esc("%s, %s" % tuple(session.coordinates)),
            "{{STARTED_AT}}": esc(session.started_at.isoformat()),
            "{{TARGET_RANGE}}": f"{start_year} to {end_year}",
            "{{ACTUAL_RANGE}}": esc(self.actual_year_range() or "n/a"),
            "{{STATUS}}": esc(session.status),
            "{{COUNT}}": str(len(self.session.unique_samples)),
            "{{MARKERS}}": "".join(markers),
            "{{CARDS}}": "".join(cards),
        }
        page = _HTML_TEMPLATE
        for key, value in replacements.items():
            page = page.replace(key, value)
        return page

    def write(self, output_dir=None):
        """Write images, metadata.json and report.html. Returns the directory."""
        output_dir = Path(output_dir or self.session.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        for _, sample in self.unique_samples():
            (output_dir / self.image_filename(sample)).write_bytes(sample.frame_bytes)
        # Date crops are kept for every probe, unique or not
        for sample in self.session.samples:
            (output_dir / self.crop_filename(sample)).write_bytes(sample.date_region_bytes)

        with open(output_dir / METADATA_FILE, "w") as f:
            json.dump(self.build_metadata(), f, indent=2)
        (output_dir / REPORT_FILE).write_text(self.render_html(), encoding="utf-8")

        logger.info("Report written to %s (%d unique images)",
                    output_dir, len(self.session.unique_samples))
        return output_dir

    def archive(self, output_dir=None):
        """
        Zip the output directory next to itself as <name>.zip.

        Returns the archive path, or None when it could not be written. The
        loose files are left in place either way.
        """
        output_dir = Path(output_dir or self.session.output_dir)
        archive_path = output_dir.parent / (output_dir.name + ".zip")
        try:
            with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                for root, _, files in os.walk(output_dir):
                    for name in sorted(files):
                        path = Path(root) / name
                        zf.write(path, path.relative_to(output_dir))
        except (OSError, zipfile.BadZipFile) as e:
            logger.error("Failed to create archive %s: %s", archive_path, e)
            return None
        logger.info("Archive created: %s (%d bytes)", archive_path, archive_path.stat().st_size)
        return archive_path
