from dalcoffee.models import ReportType
from dalcoffee.services.reports.commission_report import (
    run_scheduled_commission_report,
    run_weekly_commission_report,
)
from dalcoffee.services.reports.delayed_shipment_report import run_daily_delayed_shipment_report
from dalcoffee.services.reports.inventory_report import run_weekly_inventory_report
from dalcoffee.services.reports.smart_check_report import run_weekly_smart_check_report


JOBS_BY_TYPE = {
    ReportType.SCHEDULED_COMMISSION.value: run_scheduled_commission_report,
    ReportType.WEEKLY_COMMISSION.value: run_weekly_commission_report,
    ReportType.WEEKLY_INVENTORY.value: run_weekly_inventory_report,
    ReportType.WEEKLY_SMART_CHECK.value: run_weekly_smart_check_report,
    ReportType.DELAYED_SHIPMENTS_DAILY.value: run_daily_delayed_shipment_report,
}

# HTTP function name -> job.
JOBS_BY_FUNCTION = {
    'scheduled-commission-report': run_scheduled_commission_report,
    'weekly-commission-report': run_weekly_commission_report,
    'send-weekly-report': run_weekly_inventory_report,
    'weekly-smart-report': run_weekly_smart_check_report,
    'daily-delayed-shipment-report': run_daily_delayed_shipment_report,
}
