"""
Score aggregation and the ramyun progression tiers.

Scores are stored unbounded (never below zero) and clamped to 0..500 only for
display. The clamped value is split into five equal bands, each one a spicier
ramyun.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Tuple

DISPLAY_MAX = 500
BAR_BLOCKS = 10
FILLED_BLOCK = "⬛"
EMPTY_BLOCK = "⬜"


@dataclass(frozen=True)
class Tier:
	name: str
	description: str
	lower: int
	image_url: str | None = None


TIERS: Tuple[Tier, ...] = (
	Tier(
		name="Ramyun Mild",
		description="Very mild level 🌱 You're just getting started; the spicy stuff is still ahead!",
		lower=0,
		image_url="https://i.ibb.co/LKNMnbC/ramyunmild.png",
	),
	Tier(
		name="Ramyun Original",
		description="Classic flavor 🍜 You feel more comfortable now, but there's still a way to go before the real heat.",
		lower=100,
		image_url="https://i.ibb.co/V0TxghVh/neoguriramyun.jpg",
	),
	Tier(
		name="Ramyun Spicy",
		description="Spicy ramyun 🌶 You're confident in Korean and not afraid of challenges.",
		lower=200,
		image_url="https://i.ibb.co/bRHrxBPk/jinramyon.jpg",
	),
	Tier(
		name="Ramyun Very Spicy",
		description="Very spicy ramyun 🔥 You're advanced now; your grammar and vocabulary are in good shape.",
		lower=300,
		image_url="https://i.ibb.co/QSDtykx/shinramyon.jpg",
	),
	Tier(
		name="Ramyun Nuclear",
		description="NUCLEAR RAMYUN ☢️ You're almost Korean; you can eat and speak like a local.",
		lower=400,
		image_url="https://i.ibb.co/3mpfbWn0/buldakramyon.jpg",
	),
)


def _as_finite_number(value: Any) -> float | None:
	if isinstance(value, bool):
		return None
	try:
		number = float(value)
	except (TypeError, ValueError):
		return None
	if not math.isfinite(number):
		return None
	return number


def apply_delta(current_total: int, delta: Any) -> int:
	"""Add ``delta`` to a running total, flooring at zero.

	Non-numeric, NaN or infinite deltas leave the total untouched.

	Args:
		current_total: Stored total score (already non-negative)
		delta: Score returned by an evaluation, usually an int 1..10

	Returns:
		The new total as an int
	"""
	number = _as_finite_number(delta)
	if number is None:
		return current_total
	return max(0, int(round(current_total + number)))


def display_clamp(total: float) -> int:
	return int(min(DISPLAY_MAX, max(0, total)))


def tier_of(clamped_total: float) -> Tier:
	"""Map a clamped total onto its band; the top band is closed at 500."""
	value = min(DISPLAY_MAX, max(0, clamped_total))
	chosen = TIERS[0]
	for tier in TIERS:
		if value >= tier.lower:
			chosen = tier
	return chosen


def progress_bar(clamped_total: float, blocks: int = BAR_BLOCKS) -> Tuple[int, int]:
	value = min(DISPLAY_MAX, max(0, clamped_total))
	# Half-up rounding; the builtin round() would send 2.5 to 2.
	filled = int(math.floor(value / DISPLAY_MAX * blocks + 0.5))
	filled = min(blocks, filled)
	return filled, blocks - filled


def render_bar(clamped_total: float, blocks: int = BAR_BLOCKS) -> str:
	filled, empty = progress_bar(clamped_total, blocks)
	return FILLED_BLOCK * filled + EMPTY_BLOCK * empty


@dataclass(frozen=True)
class ProgressReport:
	total: int
	display_score: int
	display_max: int
	filled: int
	empty: int
	bar: str
	tier: Tier

	@property
	def has_points(self) -> bool:
		return self.total > 0

	def to_dict(self) -> dict:
		return {
			"total": self.total,
			"display_score": self.display_score,
			"display_max": self.display_max,
			"filled": self.filled,
			"empty": self.empty,
			"bar": self.bar,
			"has_points": self.has_points,
			"tier": {
				"name": self.tier.name,
				"description": self.tier.description,
				"image_url": self.tier.image_url,
			},
		}


def progress_report(total: int) -> ProgressReport:
	shown = display_clamp(total)
	filled, empty = progress_bar(shown)
	return ProgressReport(
		total=total,
		display_score=shown,
		display_max=DISPLAY_MAX,
		filled=filled,
		empty=empty,
		bar=render_bar(shown),
		tier=tier_of(shown),
	)
