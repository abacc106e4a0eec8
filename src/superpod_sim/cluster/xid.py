"""Canonical XID catalogue.

Every tool that prints an XID resolves it here so the same fault reads the
same in nvidia-smi, journalctl, lspci, nvsm and the bug report.
"""

from __future__ import annotations

from dataclasses import dataclass

from superpod_sim.cluster.models import XidSeverity, XIDError


@dataclass(frozen=True)
class XidInfo:
    """Reference data for one XID code."""

    code: int
    name: str
    description: str
    severity: XidSeverity
    category: str
    cause: str
    action: str


_XID_ROWS: tuple[XidInfo, ...] = (
    XidInfo(8, "GSP_ERROR", "GSP error", "Critical", "firmware",
            "GPU System Processor firmware fault", "Reset the GPU; update the driver if it recurs"),
    XidInfo(13, "GR_EXCEPTION", "Graphics Engine Exception", "Warning", "application",
            "Illegal instruction or memory access in a kernel", "Run the workload under compute-sanitizer"),
    XidInfo(14, "THERMAL_VIOLATION", "Thermal violation", "Warning", "thermal",
            "GPU exceeded a thermal limit", "Check airflow, fans and inlet temperature"),
    XidInfo(23, "SHARED_MEMORY_EXCEPTION", "GPU Shared Memory Exception", "Warning", "application",
            "Out-of-bounds or racing shared memory access in a kernel", "Use compute-sanitizer to find the access"),
    XidInfo(24, "KERNEL_LAUNCH_EXCEPTION", "GPU Exception During Kernel Launch", "Warning", "application",
            "Invalid launch parameters or exhausted resources", "Check the kernel's grid and block dimensions"),
    XidInfo(27, "MEMORY_INTERFACE_ERROR", "GPU Memory Interface Error", "Critical", "memory",
            "GPU core and HBM failed to communicate", "Check temperature and run dcgmi diag -r 3"),
    XidInfo(31, "MMU_FAULT", "GPU memory page fault", "Warning", "application",
            "Invalid virtual address accessed by a kernel", "Debug the application's memory accesses"),
    XidInfo(32, "PBDMA_ERROR", "Invalid or corrupted push buffer stream", "Warning", "driver",
            "Corrupted command stream from the host", "Check PCIe health and driver version"),
    XidInfo(38, "DRIVER_FIRMWARE_ERROR", "Driver firmware error", "Critical", "driver",
            "Driver and firmware disagree on state", "Reload the driver and reset the GPU"),
    XidInfo(43, "RESET_CHANNEL", "GPU stopped processing", "Critical", "hardware",
            "A channel hung and was reset", "Restart the job; run dcgmi diag -r 2 if it repeats"),
    XidInfo(45, "PREEMPTIVE_CLEANUP", "Preemptive cleanup, due to previous errors", "Informational", "driver",
            "Channels torn down after an earlier error", "Look at the XID that preceded it"),
    XidInfo(48, "DBE_ERROR", "Double Bit ECC Error", "Critical", "memory",
            "Uncorrectable error in GPU memory", "Drain the node, reset the GPU and check row remapping"),
    XidInfo(54, "HW_WATCHDOG_TIMEOUT", "Hardware Watchdog Timeout", "Critical", "hardware",
            "GPU hung below the driver, often thermal or power related", "Check temperature and power, then reset"),
    XidInfo(56, "DISPLAY_ENGINE_ERROR", "Display Engine Error", "Warning", "hardware",
            "Display driver or configuration problem", "Update the driver"),
    XidInfo(57, "COPY_ENGINE_ERROR", "Error in Copy Engine", "Warning", "driver",
            "Memory transfer failed, often over a bad PCIe link", "Check PCIe link status with lspci -vv"),
    XidInfo(61, "PMU_BREAKPOINT", "Internal micro-controller breakpoint/warning", "Warning", "firmware",
            "Firmware hit an internal assertion", "Collect nvidia-bug-report.sh and monitor"),
    XidInfo(62, "SPURIOUS_HOST_INTERRUPT", "Spurious Host Interrupt", "Informational", "driver",
            "Interrupt configuration or driver timing issue", "No action needed unless it repeats"),
    XidInfo(63, "ROW_REMAP_FAILURE", "Row Remapping Failure", "Critical", "memory",
            "GPU memory ran out of spare rows for remapping", "Check nvidia-smi -q -d ROW_REMAPPER and plan an RMA"),
    XidInfo(64, "ROW_REMAP_THRESHOLD", "Row Remapping Threshold Exceeded", "Critical", "memory",
            "Too many memory rows have been remapped", "Schedule GPU replacement"),
    XidInfo(68, "VIDEO_PROCESSOR_EXCEPTION", "Video Processor Exception", "Warning", "hardware",
            "Video codec error or unsupported format", "Check codec compatibility"),
    XidInfo(69, "GR_CLASS_ERROR", "Graphics Engine Class Error", "Warning", "driver",
            "Driver or application misuse of a graphics context", "Update the driver"),
    XidInfo(72, "NVLINK_FLOW_CONTROL", "NVLink Flow Control Error", "Warning", "interconnect",
            "NVLink congestion or fabric manager problem", "Check nvidia-smi nvlink -s and the fabric manager"),
    XidInfo(74, "NVLINK_ERROR", "NVLink Error", "Critical", "interconnect",
            "Fatal error on an NVLink connection", "Check NVLink status with nvidia-smi nvlink -s and reset"),
    XidInfo(76, "NVLINK_TRAINING_ERROR", "NVLink Training Error", "Critical", "interconnect",
            "NVLink could not establish a connection", "Check NVLink bridge and cable connections"),
    XidInfo(77, "NVLINK_TIMEOUT", "NVLink Timeout", "Critical", "interconnect",
            "GPU-to-GPU communication over NVLink timed out", "Check NVLink error counters and NVSwitch health"),
    XidInfo(78, "NVLINK_ECC_ERROR", "NVLink ECC Error", "Critical", "interconnect",
            "Uncorrectable ECC error on the NVLink data path", "Run dcgmi diag -r 3; hardware replacement likely"),
    XidInfo(79, "GPU_FALLEN_OFF_BUS", "GPU has fallen off the bus", "Critical", "hardware",
            "The GPU is no longer reachable over PCIe", "Drain the node, power cycle and reseat or RMA the GPU"),
    XidInfo(92, "HIGH_SBE_RATE", "High single-bit ECC error rate", "Warning", "memory",
            "Correctable errors are accumulating quickly", "Monitor and schedule a GPU reset"),
    XidInfo(94, "CONTAINED_ECC", "Contained ECC error", "Warning", "memory",
            "Uncorrectable error contained to one application", "Restart the affected application"),
    XidInfo(95, "UNCONTAINED_ECC", "Uncontained ECC error", "Critical", "memory",
            "Uncorrectable error affecting all applications", "Drain the node and reset the GPU"),
    XidInfo(109, "CTXSW_TIMEOUT", "Context switch timeout", "Critical", "driver",
            "The GPU failed to switch contexts in time", "Reset the GPU and check for hung workloads"),
    XidInfo(119, "GSP_RPC_TIMEOUT", "GSP RPC timeout", "Critical", "firmware",
            "Driver timed out waiting on GSP firmware", "Reset the GPU; update the driver if it recurs"),
)

XID_CATALOG: dict[int, XidInfo] = {row.code: row for row in _XID_ROWS}


def lookup_xid(code: int) -> XidInfo | None:
    return XID_CATALOG.get(code)


def xid_description(error: XIDError) -> str:
    info = XID_CATALOG.get(error.code)
    if info is not None:
        return info.description
    return error.description or f"Unknown XID {error.code}"


def xid_severity(error: XIDError) -> XidSeverity:
    info = XID_CATALOG.get(error.code)
    if info is not None:
        return info.severity
    return error.severity
