# tag_patterns.py - Win rate analysis of tag combinations

from datetime import datetime, timedelta
from functools import cmp_to_key
from typing import Dict, List, Optional

import pandas as pd

from trade_model import SESSIONS


class TagPatternService:
    """
    Finds the tag combinations a trader wins with, and the ones that are
    getting worse (last 30 days vs the 30-90 days before).
    """

    min_trades_for_analysis = 5
    min_trades_for_combination = 3
    recent_period_days = 30
    historical_period_days = 90

    # ============================================
    # PUBLIC API
    # ============================================
    def analyze_tag_patterns(self, trades, target_date=None, settings: Optional[Dict] = None) -> Dict:
        """
        Args:
            trades: normalized trade frame
            target_date: end of the recent window (defaults to now)
            settings: score settings; excluded_tags_from_patterns is honoured

        Returns:
            dict with insights, top_combinations, declining_combinations, market_condition_alerts
        """
        target_date = pd.Timestamp(target_date if target_date is not None else datetime.now())
        recent_mask, historical_mask = self._period_masks(trades, target_date)

        excluded = (settings or {}).get('excluded_tags_from_patterns') or []
        combinations = self.generate_tag_combinations(trades, excluded)

        tag_sets = self._tag_sets(trades)
        analyzed = [
            self._analyze_combination(combo, trades, tag_sets, recent_mask, historical_mask)
            for combo in combinations
        ]
        analyzed = [c for c in analyzed if c['total_trades'] >= self.min_trades_for_combination]

        top = sorted(analyzed, key=cmp_to_key(_compare_by_win_rate_then_volume))[:10]

        declining = [
            c for c in analyzed
            if c['trend'] == 'declining' and c['total_trades'] >= self.min_trades_for_analysis
        ]
        declining.sort(key=lambda c: c['recent_win_rate'] - c['historical_win_rate'])
        declining = declining[:5]

        insights = self._generate_insights(top, declining)
        alerts = self._generate_market_condition_alerts(analyzed)

        return {
            'insights': insights + alerts,
            'top_combinations': top,
            'declining_combinations': declining,
            'market_condition_alerts': alerts,
        }

    def get_tag_combination_stats(self, trades, tags: List[str], target_date=None) -> Dict:
        """Stats for a single tag combination, windows relative to target_date (now by default)."""
        target_date = pd.Timestamp(target_date if target_date is not None else datetime.now())
        recent_mask, historical_mask = self._period_masks(trades, target_date)
        return self._analyze_combination(list(tags), trades, self._tag_sets(trades), recent_mask, historical_mask)

    def generate_tag_combinations(self, trades, excluded_tags=None) -> List[List[str]]:
        """Singles and pairs of every trade's tags; triples too once there are more than 50 trades."""
        excluded = set(excluded_tags or [])
        singles = {}
        pairs = {}
        triples = {}

        for tags in trades['tags']:
            filtered = [t for t in (tags or []) if not t.startswith('Partials:') and t not in excluded]
            n = len(filtered)
            for tag in filtered:
                singles[tag] = None
            for i in range(n):
                for j in range(i + 1, n):
                    pairs[tuple(sorted([filtered[i], filtered[j]]))] = None
                    for k in range(j + 1, n):
                        triples[tuple(sorted([filtered[i], filtered[j], filtered[k]]))] = None

        combinations = [[tag] for tag in singles]
        combinations.extend(list(pair) for pair in pairs)
        if len(trades) > 50:
            combinations.extend(list(triple) for triple in triples)
        return combinations

    # ============================================
    # INTERNALS
    # ============================================
    def _period_masks(self, trades, target_date):
        dates = pd.to_datetime(trades['trade_date'])
        recent_cutoff = target_date - timedelta(days=self.recent_period_days)
        historical_cutoff = target_date - timedelta(days=self.historical_period_days)
        recent = dates > recent_cutoff
        historical = (dates > historical_cutoff) & (dates <= recent_cutoff)
        return recent, historical

    @staticmethod
    def _tag_sets(trades):
        return trades['tags'].apply(lambda t: set(t or []))

    @staticmethod
    def _win_rate(trade_types):
        wins = int((trade_types == 'win').sum())
        losses = int((trade_types == 'loss').sum())
        decisive = wins + losses
        return wins, losses, (wins / decisive * 100 if decisive else 0.0), decisive

    def _analyze_combination(self, tags, trades, tag_sets, recent_mask, historical_mask):
        wanted = set(tags)
        matching = tag_sets.apply(lambda s: wanted.issubset(s))

        matched = trades[matching]
        wins, losses, win_rate, _ = self._win_rate(matched['trade_type'])
        total_pnl = float(matched['amount'].sum()) if len(matched) else 0.0

        _, _, recent_rate, recent_total = self._win_rate(trades.loc[matching & recent_mask, 'trade_type'])
        _, _, hist_rate, hist_total = self._win_rate(trades.loc[matching & historical_mask, 'trade_type'])

        trend = 'stable'
        if recent_total >= 3 and hist_total >= 3:
            diff = recent_rate - hist_rate
            if diff > 10:
                trend = 'improving'
            elif diff < -10:
                trend = 'declining'

        return {
            'tags': list(tags),
            'win_rate': win_rate,
            'total_trades': len(matched),
            'wins': wins,
            'losses': losses,
            'total_pnl': total_pnl,
            'avg_pnl': total_pnl / len(matched) if len(matched) else 0.0,
            'trend': trend,
            'recent_win_rate': recent_rate,
            'historical_win_rate': hist_rate,
        }

    def _generate_insights(self, top, declining):
        insights = []

        for index, combo in enumerate(top[:3]):
            if combo['win_rate'] > 70 and combo['total_trades'] >= self.min_trades_for_analysis:
                label = ' + '.join(combo['tags'])
                insights.append({
                    'type': 'high_performance',
                    'title': f"High-Performance Pattern #{index + 1}",
                    'description': (f'The combination "{label}" shows exceptional performance with '
                                    f"{combo['win_rate']:.1f}% win rate across {combo['total_trades']} trades."),
                    'tag_combination': combo['tags'],
                    'win_rate': combo['win_rate'],
                    'confidence': min(95, 50 + combo['total_trades'] * 2),
                    'recommendation': (f'Consider focusing more on trades that match this pattern. '
                                       f'Your success rate with "{label}" is significantly above average.'),
                    'severity': 'high' if combo['win_rate'] > 80 else 'medium',
                })

        for combo in declining:
            decline = combo['historical_win_rate'] - combo['recent_win_rate']
            if decline > 15:
                label = ' + '.join(combo['tags'])
                insights.append({
                    'type': 'declining_pattern',
                    'title': "Declining Pattern Alert",
                    'description': (f'The combination "{label}" has declined from '
                                    f"{combo['historical_win_rate']:.1f}% to {combo['recent_win_rate']:.1f}% "
                                    f"win rate recently."),
                    'tag_combination': combo['tags'],
                    'win_rate': combo['recent_win_rate'],
                    'confidence': min(90, 40 + combo['total_trades'] * 3),
                    'recommendation': (f'Review your approach with "{label}" trades. Market conditions '
                                       f'may have changed, requiring strategy adjustment.'),
                    'severity': 'high' if decline > 25 else 'medium',
                })

        return insights

    def _generate_market_condition_alerts(self, combinations):
        alerts = []
        for combo in combinations:
            session = next((t for t in combo['tags'] if t in SESSIONS), None)
            if session is None or combo['trend'] != 'declining' or combo['total_trades'] < 5:
                continue
            others = ' + '.join(t for t in combo['tags'] if t != session)
            alerts.append({
                'type': 'market_condition',
                'title': f"{session} Session Performance Decline",
                'description': f'Your performance during {session} session with "{others}" has declined recently.',
                'tag_combination': combo['tags'],
                'win_rate': combo['recent_win_rate'],
                'confidence': 75,
                'recommendation': (f"Consider adjusting your strategy for {session} session or reducing "
                                   f"position sizes during this time until performance improves."),
                'severity': 'medium',
            })
        return alerts[:2]


def _compare_by_win_rate_then_volume(a, b):
    # Win rates within 5 points rank by trade count
    diff = b['win_rate'] - a['win_rate']
    if abs(diff) < 5:
        return b['total_trades'] - a['total_trades']
    return diff


tag_pattern_service = TagPatternService()
