"""Render Whoop records into Markdown daily notes.

Everything here is pure: the same dataset, date, timezone and sync time always
produce the same text.

Date matching happens in local time.  A record belongs to a date when its
relevant timestamp, converted to the configured timezone, falls on that date:

    sleep     → ``end``         (nap=false is the main sleep, nap=true are naps)
    recovery  → ``created_at``
    cycle     → ``start``
    workout   → ``start``

A date with none of these produces no note.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone, tzinfo

from src.wearables.adapters.whoop import sport_name
from src.wearables.base import DailyRecordSet, WhoopDataset
from src.wearables.config_loader import NoteConfig, get_note_config

logger = logging.getLogger("whoop_sync.wearables.formatter")

KJ_TO_KCAL = 0.239006
METERS_PER_MILE = 1609.34
FEET_PER_METER = 3.28084
POUNDS_PER_KG = 2.20462

_BAND_EMOJI = {"green": "🟢", "yellow": "🟡", "orange": "🟠", "red": "🔴"}

_HR_ZONES = (
    ("zone_zero_milli", "Zone 0 (Rest)"),
    ("zone_one_milli", "Zone 1 (Light)"),
    ("zone_two_milli", "Zone 2 (Moderate)"),
    ("zone_three_milli", "Zone 3 (Hard)"),
    ("zone_four_milli", "Zone 4 (Very Hard)"),
    ("zone_five_milli", "Zone 5 (Max)"),
)


# ---------------------------------------------------------------------------
# Value guards and formatting
# ---------------------------------------------------------------------------


def _num(value: object) -> float | None:
    """Return ``value`` as a finite float, or None if it is missing or invalid."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_duration(milliseconds: object) -> str:
    """Format milliseconds as ``'7h 32m'``.  Missing or invalid input gives ``'0h 0m'``."""
    ms = _num(milliseconds)
    if not ms or ms < 0:
        return "0h 0m"
    hours = int(ms // 3_600_000)
    minutes = int((ms % 3_600_000) // 60_000)
    return f"{hours}h {minutes}m"


def format_percentage(value: object) -> str:
    v = _num(value)
    if v is None:
        return "N/A"
    return f"{_round_half_up(v)}%"


def format_number(value: object, decimals: int = 1) -> str:
    v = _num(value)
    if v is None:
        return "N/A"
    if decimals == 0:
        return str(_round_half_up(v))
    return f"{v:.{decimals}f}"


def _ratio_pct(part: object, whole: object) -> float | None:
    p, w = _num(part), _num(whole)
    if p is None:
        return None
    return p / (w or 1) * 100


def _kcal(kilojoule: object) -> float | None:
    kj = _num(kilojoule)
    return kj * KJ_TO_KCAL if kj is not None else None


# ---------------------------------------------------------------------------
# Timestamps and date selection
# ---------------------------------------------------------------------------


def parse_timestamp(value: object) -> datetime | None:
    """Parse a Whoop ISO-8601 timestamp into an aware datetime (naive = UTC)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_date(value: object, tz: tzinfo | None = None) -> date | None:
    """Return the calendar date of a timestamp in ``tz`` (None = system local)."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(tz).date()


def _local_time(value: object, tz: tzinfo | None) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return "N/A"
    return parsed.astimezone(tz).strftime("%I:%M %p")


def get_sleep_for_date(
    sleep_records: list[dict], day: date, tz: tzinfo | None = None
) -> tuple[dict | None, list[dict]]:
    """Return (main sleep, naps) whose ``end`` falls on ``day``."""
    ending = [s for s in sleep_records if local_date(s.get("end"), tz) == day]
    main_sleep = next((s for s in ending if not s.get("nap")), None)
    naps = [s for s in ending if s.get("nap")]
    return main_sleep, naps


def get_recovery_for_date(
    recovery_records: list[dict], day: date, tz: tzinfo | None = None
) -> dict | None:
    return next((r for r in recovery_records if local_date(r.get("created_at"), tz) == day), None)


def get_cycle_for_date(cycles: list[dict], day: date, tz: tzinfo | None = None) -> dict | None:
    return next((c for c in cycles if local_date(c.get("start"), tz) == day), None)


def get_workouts_for_date(
    workouts: list[dict], day: date, tz: tzinfo | None = None
) -> list[dict]:
    return [w for w in workouts if local_date(w.get("start"), tz) == day]


def select_day(dataset: WhoopDataset, day: date, tz: tzinfo | None = None) -> DailyRecordSet:
    """Group the dataset's records that belong to ``day``."""
    main_sleep, naps = get_sleep_for_date(dataset.sleep, day, tz)
    return DailyRecordSet(
        date=day,
        main_sleep=main_sleep,
        naps=naps,
        recovery=get_recovery_for_date(dataset.recovery, day, tz),
        cycle=get_cycle_for_date(dataset.cycles, day, tz),
        workouts=get_workouts_for_date(dataset.workouts, day, tz),
    )


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class NoteFormatter:
    """Builds daily notes and the folder README.

    Args:
        tz:     Timezone for date matching and displayed times (None = system local).
        config: Note rendering config (bundled note_config.yaml by default).
    """

    def __init__(self, tz: tzinfo | None = None, config: NoteConfig | None = None) -> None:
        self._tz = tz
        self._config = config or get_note_config()

    def select_day(self, dataset: WhoopDataset, day: date) -> DailyRecordSet:
        return select_day(dataset, day, self._tz)

    def create_daily_note(
        self,
        day: date,
        dataset: WhoopDataset,
        synced_at: datetime | None = None,
    ) -> str | None:
        """Render the note for ``day``, or None when the day has no records."""
        records = self.select_day(dataset, day)
        if not records.has_data:
            return None
        return self.render(records, dataset.body_measurements, synced_at)

    def render(
        self,
        records: DailyRecordSet,
        body_measurements: list[dict] | None = None,
        synced_at: datetime | None = None,
    ) -> str:
        synced_at = synced_at or datetime.now(timezone.utc)
        date_str = records.date.isoformat()

        parts = [
            self._frontmatter(records),
            f"# {date_str} - Whoop Summary\n\n",
            self._recovery_section(records.recovery),
            self._sleep_section(records.main_sleep, records.naps),
            self._strain_section(records.cycle),
            self._workouts_section(records.workouts),
            self._body_section(records.date, body_measurements or []),
            f"## 📝 Notes\n{self._config.notes_placeholder}\n\n",
            f"---\n*{self._config.footer} on {synced_at.isoformat()}*\n",
        ]
        return "".join(parts)

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _frontmatter(self, records: DailyRecordSet) -> str:
        rec = (records.recovery or {}).get("score") or {}
        slp = (records.main_sleep or {}).get("score") or {}
        cyc = (records.cycle or {}).get("score") or {}
        calories = _kcal(cyc.get("kilojoule"))

        fields = {
            "date": records.date.isoformat(),
            "tags": f"[{', '.join(self._config.tags)}]",
            "recovery_score": format_number(rec.get("recovery_score"), 0),
            "hrv": format_number(rec.get("hrv_rmssd_milli"), 1),
            "rhr": format_number(rec.get("resting_heart_rate"), 0),
            "sleep_performance": format_number(slp.get("sleep_performance_percentage"), 0),
            "strain": format_number(cyc.get("strain"), 1),
            "calories": _round_half_up(calories) if calories is not None else "N/A",
            "workouts_count": len(records.workouts),
        }
        lines = "".join(f"{key}: {value}\n" for key, value in fields.items())
        return f"---\n{lines}---\n\n"

    def _recovery_section(self, recovery: dict | None) -> str:
        out = "## 🔄 Recovery\n"
        score = (recovery or {}).get("score")
        if not score:
            return out + "*No recovery data available*\n\n"

        value = _num(score.get("recovery_score"))
        if value is None:
            out += "- **Recovery Score**: N/A\n"
        else:
            emoji = _BAND_EMOJI[self._config.recovery_band(value)]
            out += f"- **Recovery Score**: {emoji} {format_number(value, 0)}%\n"
        out += f"- **HRV**: {format_number(score.get('hrv_rmssd_milli'), 1)} ms\n"
        out += f"- **Resting Heart Rate**: {format_number(score.get('resting_heart_rate'), 0)} bpm\n"
        if "skin_temp_celsius" in score:
            out += f"- **Skin Temp**: {format_number(score.get('skin_temp_celsius'), 1)}°C\n"
        if "spo2_percentage" in score:
            out += f"- **SpO2**: {format_number(score.get('spo2_percentage'), 1)}%\n"
        return out + "\n"

    def _sleep_section(self, main_sleep: dict | None, naps: list[dict]) -> str:
        out = "## 😴 Sleep\n"
        score = (main_sleep or {}).get("score")
        if score:
            stages = score.get("stage_summary")
            out += f"- **Performance**: {format_percentage(score.get('sleep_performance_percentage'))}\n"
            if stages:
                in_bed = _num(stages.get("total_in_bed_time_milli"))
                awake = _num(stages.get("total_awake_time_milli"))
                asleep = in_bed - awake if in_bed is not None and awake is not None else None
                out += f"- **Time in Bed**: {format_duration(in_bed)}\n"
                out += f"- **Time Asleep**: {format_duration(asleep)}\n"
            out += f"- **Efficiency**: {format_percentage(score.get('sleep_efficiency_percentage'))}\n"
            out += f"- **Consistency**: {format_percentage(score.get('sleep_consistency_percentage'))}\n"
            out += f"- **Respiratory Rate**: {format_number(score.get('respiratory_rate'), 1)} brpm\n"
            if stages:
                out += f"\n{self._sleep_stages(stages)}\n"
            if score.get("sleep_needed"):
                out += f"\n{self._sleep_need(score['sleep_needed'])}\n"
        else:
            out += "*No sleep data available*\n"

        if naps:
            out += "\n### 💤 Naps\n"
            for index, nap in enumerate(naps, start=1):
                nap_score = nap.get("score") or {}
                in_bed = (nap_score.get("stage_summary") or {}).get("total_in_bed_time_milli")
                out += (
                    f"- **Nap {index}** ({_local_time(nap.get('start'), self._tz)}): "
                    f"{format_duration(in_bed)}, "
                    f"Performance: {format_percentage(nap_score.get('sleep_performance_percentage'))}\n"
                )
        return out + "\n"

    @staticmethod
    def _sleep_stages(stages: dict) -> str:
        total = stages.get("total_in_bed_time_milli")
        rows = (
            ("REM Sleep", "total_rem_sleep_time_milli"),
            ("Deep Sleep", "total_slow_wave_sleep_time_milli"),
            ("Light Sleep", "total_light_sleep_time_milli"),
            ("Awake Time", "total_awake_time_milli"),
        )
        lines = ["### Sleep Stages"]
        for label, key in rows:
            lines.append(
                f"- **{label}**: {format_duration(stages.get(key))} "
                f"({format_percentage(_ratio_pct(stages.get(key), total))})"
            )
        lines.append(f"- **Sleep Cycles**: {int(_num(stages.get('sleep_cycle_count')) or 0)}")
        lines.append(f"- **Disturbances**: {int(_num(stages.get('disturbance_count')) or 0)}")
        return "\n".join(lines)

    @staticmethod
    def _sleep_need(need: dict) -> str:
        nap_credit = abs(_num(need.get("need_from_recent_nap_milli")) or 0)
        return "\n".join(
            [
                "### Sleep Need",
                f"- **Baseline Need**: {format_duration(need.get('baseline_milli'))}",
                f"- **Sleep Debt**: {format_duration(need.get('need_from_sleep_debt_milli'))}",
                f"- **Recent Strain**: {format_duration(need.get('need_from_recent_strain_milli'))}",
                f"- **Nap Credit**: {format_duration(nap_credit)}",
            ]
        )

    def _strain_section(self, cycle: dict | None) -> str:
        out = "## 💪 Strain & Activity\n"
        score = (cycle or {}).get("score")
        if not score:
            return out + "*No strain data available*\n\n"

        strain = _num(score.get("strain"))
        if strain is None:
            out += "- **Day Strain**: N/A\n"
        else:
            emoji = _BAND_EMOJI[self._config.strain_band(strain)]
            out += f"- **Day Strain**: {emoji} {format_number(strain, 1)}\n"
        out += f"- **Average HR**: {format_number(score.get('average_heart_rate'), 0)} bpm\n"
        out += f"- **Max HR**: {format_number(score.get('max_heart_rate'), 0)} bpm\n"
        out += f"- **Calories**: {format_number(_kcal(score.get('kilojoule')), 0)} cal\n"
        return out + "\n"

    def _workouts_section(self, workouts: list[dict]) -> str:
        if not workouts:
            return ""
        return "## 🏃 Workouts\n" + "".join(self._workout(w) + "\n\n" for w in workouts)

    def _workout(self, workout: dict) -> str:
        score = workout.get("score") or {}
        start = parse_timestamp(workout.get("start"))
        end = parse_timestamp(workout.get("end"))
        duration_ms = (end - start).total_seconds() * 1000 if start and end else None

        lines = [
            f"### {sport_name(workout)} - {_local_time(workout.get('start'), self._tz)}",
            f"- **Duration**: {format_duration(duration_ms)}",
            f"- **Strain**: {format_number(score.get('strain'), 1)}",
            f"- **Average HR**: {format_number(score.get('average_heart_rate'), 0)} bpm",
            f"- **Max HR**: {format_number(score.get('max_heart_rate'), 0)} bpm",
            f"- **Calories**: {format_number(_kcal(score.get('kilojoule')), 0)} cal",
        ]

        distance = _num(score.get("distance_meter"))
        if distance:
            lines.append(f"- **Distance**: {distance / METERS_PER_MILE:.2f} miles")
        altitude = _num(score.get("altitude_gain_meter"))
        if altitude:
            lines.append(f"- **Elevation Gain**: {altitude * FEET_PER_METER:.0f} ft")

        zones = score.get("zone_duration") or {}
        zone_lines = [
            f"- **{label}**: {format_duration(zones[key])}"
            for key, label in _HR_ZONES
            if _num(zones.get(key))
        ]
        if zone_lines:
            lines.append("")
            lines.append("#### Heart Rate Zones")
            lines.extend(zone_lines)
        return "\n".join(lines)

    def _body_section(self, day: date, body_measurements: list[dict]) -> str:
        if not body_measurements:
            return ""
        latest = body_measurements[0]

        measured_on = local_date(latest.get("created_at") or latest.get("updated_at"), self._tz)
        if measured_on is None:
            updated = "*Latest measurement*"
        else:
            days_ago = (day - measured_on).days
            if days_ago < 0 or days_ago > self._config.body_max_age_days:
                return ""
            updated = "*Updated today*" if days_ago == 0 else f"*Updated {days_ago} days ago*"

        out = f"## 📊 Body Measurements\n{updated}\n"
        height = _num(latest.get("height_meter"))
        if height:
            total_feet = height * FEET_PER_METER
            feet = int(total_feet)
            inches = _round_half_up((total_feet - feet) * 12)
            if inches == 12:
                feet, inches = feet + 1, 0
            out += f"- **Height**: {feet}'{inches}\"\n"
        weight = _num(latest.get("weight_kilogram"))
        if weight:
            out += f"- **Weight**: {weight * POUNDS_PER_KG:.1f} lbs\n"
        max_hr = _num(latest.get("max_heart_rate"))
        if max_hr:
            out += f"- **Max HR**: {int(max_hr)} bpm\n"
        return out + "\n"

    # ------------------------------------------------------------------
    # README
    # ------------------------------------------------------------------

    def create_readme(
        self,
        last_sync: datetime,
        *,
        sleep_records: int = 0,
        recovery_records: int = 0,
        workout_records: int = 0,
        notes_created: int = 0,
        folder_name: str = "WHOOP",
    ) -> str:
        """Render the README placed at the root of the notes folder."""
        return f"""# Whoop Data Sync

This folder contains your daily Whoop fitness data, synced automatically.

## 📊 Sync Statistics

- **Last Sync**: {last_sync.isoformat()}
- **Sleep Records**: {sleep_records}
- **Recovery Records**: {recovery_records}
- **Workout Records**: {workout_records}
- **Notes Created**: {notes_created}

## 📁 Structure

```
{folder_name}/
├── Daily/           # Daily notes organized by year and month
│   └── YYYY/
│       └── MM-Month/
│           └── YYYY-MM-DD.md
└── README.md        # This file
```

## 📈 Data Included

### Recovery Metrics
- Recovery score with color indicators (🟢🟡🔴)
- Heart Rate Variability (HRV)
- Resting Heart Rate
- Skin Temperature
- Blood Oxygen (SpO2)

### Sleep Analysis
- Sleep performance, efficiency and consistency
- Sleep stages (REM, Deep, Light, Awake)
- Sleep need and debt
- Respiratory rate
- Naps

### Activity & Strain
- Daily strain score
- Workout details and heart rate zones
- Calorie burn
- Distance and elevation (when available)

### Body Measurements
- Height, weight, and max heart rate

---
*{self._config.footer}*
"""
