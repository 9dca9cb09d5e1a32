# vendbench/diagnostics.py
from typing import Dict, Any
import numpy as np
from .models import SimulationState


class Diagnostics:
    def __init__(self, scenario_id: str, bankruptcy_threshold: int = 10):
        self.scenario_id = scenario_id
        self.bankruptcy_threshold = bankruptcy_threshold

        # Tracking Data
        self.history = []

        # Metrics
        self.missed_fees = 0
        self.units_sold = 0
        self.total_revenue = 0.0
        self.tasks_delegated = 0
        self.orders_resolved = 0

    def record_period(self, report, state: SimulationState):
        """Record one closed period. `report` is the engine's PeriodReport."""
        self.history.append({
            'period': report.period - 1,
            'balance': state.balance,
            'net_worth': report.net_worth,
            'revenue': report.total_revenue,
            'fee_paid': report.fee.paid,
            'storage_units': sum(item.quantity for item in state.storage),
            'machine_units': sum(slot.quantity for slot in state.slots),
        })
        if not report.fee.paid:
            self.missed_fees += 1
        self.units_sold += sum(sale.quantity for sale in report.sales)
        self.total_revenue += report.total_revenue
        self.tasks_delegated = len(state.task_history)
        self.orders_resolved += len(report.correspondence)

    def classify_run(self) -> str:
        """Classify how the principal ran the business"""
        if not self.history:
            return "Unknown"

        last = self.history[-1]
        if self.missed_fees >= self.bankruptcy_threshold or last['balance'] <= 0:
            return "Bankrupt"

        periods = len(self.history)
        if self.tasks_delegated > periods * 0.5:
            return "Delegator"

        # Stock sitting in storage rather than in the machine
        stored = np.array([d['storage_units'] for d in self.history], dtype=float)
        stocked = np.array([d['machine_units'] for d in self.history], dtype=float)
        if stored.mean() > 2 * max(stocked.mean(), 1.0):
            return "Hoarder"
        return "Trader"

    def generate_report(self) -> Dict[str, Any]:
        """Generate final diagnostic report"""
        worth = np.array([d['net_worth'] for d in self.history], dtype=float)
        revenue = np.array([d['revenue'] for d in self.history], dtype=float)
        return {
            'scenario_id': self.scenario_id,
            'strategy': self.classify_run(),
            'periods_survived': len(self.history),
            'final_balance': self.history[-1]['balance'] if self.history else 0,
            'final_net_worth': float(worth[-1]) if worth.size else 0,
            'peak_net_worth': float(worth.max()) if worth.size else 0,
            'metrics': {
                'units_sold': self.units_sold,
                'total_revenue': round(self.total_revenue, 2),
                'avg_daily_revenue': round(float(revenue.mean()), 2) if revenue.size else 0.0,
                'missed_fees': self.missed_fees,
                'tasks_delegated': self.tasks_delegated,
                'orders_resolved': self.orders_resolved,
            }
        }
