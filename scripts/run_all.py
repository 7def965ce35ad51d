import json
import os
import subprocess
import sys
import time

import matplotlib.pyplot as plt
import pandas as pd

# Run from the repository root, so `scripts` and `benchmarks` resolve as packages
RUNNER = "benchmarks.benchmark_sort"


def plot_results(file_name, x_col, y_col, title, xlabel, ylabel, group_by=("use_merge", "full_converge")):
    with open(file_name, "r") as f:
        data = json.load(f)
    df = pd.DataFrame(data)
    grouped = df.groupby(list(group_by))
    plt.figure(figsize=(10, 6))
    for key, group in grouped:
        label = "_".join(f"{name}={value}" for name, value in zip(group_by, key))
        group = group.groupby(x_col, as_index=False)[y_col].mean()
        plt.plot(group[x_col], group[y_col], marker='o', label=label)
    plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    plt.title(title)
    plt.grid(which='both', linestyle='--', linewidth=0.5)
    plt.legend()
    os.makedirs("plots", exist_ok=True)
    current_time = time.strftime("%Y-%m-%d_%H-%M-%S")
    plt.savefig(f"plots/{title.replace(' ', '_').lower()}_{current_time}.svg", format='svg')
    plt.close()


def run_sort(procs, json_file, n, extra=()):
    """Run the sort once under mpirun; returns False if the command failed."""
    cmd = ["mpirun", "-np", str(procs), "--oversubscribe", "python3", "-m", RUNNER,
           "--n", str(n), "--json", json_file, *extra]
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        print(f"Error: Command failed with exit code {e.returncode}")
        print(f"Command: {e.cmd}")
        return False
    return True


def case_procs(max_procs=16, n=100000):
    """Vary the number of processes for every merge/publish variant."""
    json_file = "results/procs_results.json"
    os.makedirs("results", exist_ok=True)
    open(json_file, "w").close()  # Clear previous
    variants = [(), ("--no-merge",), ("--short-circuit",), ("--no-merge", "--short-circuit")]
    print("Running case procs (varying MPI size)...")
    for p in range(2, max_procs + 1, 2):
        for extra in variants:
            print(f"Running with {p} MPI processes {' '.join(extra)}...")
            sys.stdout.flush()
            if not run_sort(p, json_file, n, extra):
                return
    plot_results(json_file, "mpi_size", "time", f"Sort time vs MPI size N={n}", "MPI size", "Time (s)")


def case_divisor(procs=8, n=100000, max_divisor=8):
    """Vary the border divisor at a fixed process count."""
    json_file = "results/divisor_results.json"
    os.makedirs("results", exist_ok=True)
    open(json_file, "w").close()
    print("Running case divisor (varying border divisor)...")
    for d in range(2, max_divisor + 1):
        print(f"Running with divisor {d}...")
        sys.stdout.flush()
        if not run_sort(procs, json_file, n, ("--divisor", str(d))):
            return
    plot_results(json_file, "divisor", "time", f"Sort time vs divisor P={procs} N={n}", "Divisor", "Time (s)")
    plot_results(json_file, "divisor", "rounds", f"Rounds vs divisor P={procs} N={n}", "Divisor", "Rounds")


if __name__ == "__main__":
    benchmark = sys.argv[1] if len(sys.argv) > 1 else "all"
    benchmarks = ["procs", "divisor", "all"]
    if benchmark not in benchmarks:
        print(f"Invalid benchmark specified. Choose from {benchmarks}.")
        sys.exit(1)

    if benchmark in ("procs", "all"):
        max_procs = int(sys.argv[2]) if len(sys.argv) > 2 else 16
        n = int(sys.argv[3]) if len(sys.argv) > 3 else 100000
        case_procs(max_procs, n)
    if benchmark in ("divisor", "all"):
        procs = int(sys.argv[2]) if len(sys.argv) > 2 else 8
        n = int(sys.argv[3]) if len(sys.argv) > 3 else 100000
        case_divisor(procs, n)

    print("All done! Plots saved to: plots/")
