#!/usr/bin/env python3
"""
Test Runner for poschat

PURPOSE:
    Runs groups of the poschat test suite through pytest, optionally with
    coverage reporting.

USAGE:
    python tests/run_tests.py [options]

    Options:
    --unit           Parsers, rules, payment state, prompts, kernel clients
    --pipeline       Tool provider, inference loop, receipt sync, orchestrator
    --api            HTTP endpoints
    --all            Run all available tests
    --coverage       Run tests with coverage reporting
    --verbose        Run with verbose output
"""

import sys
import os
import subprocess
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

SUITES = {
    "unit": [
        "tests/test_tool_call_parser.py",
        "tests/test_order_rules.py",
        "tests/test_payment_state.py",
        "tests/test_prompts.py",
        "tests/test_kernel_clients.py",
        "tests/test_session_and_trace.py",
        "tests/test_config.py",
        "tests/test_catalog_and_utils.py",
    ],
    "pipeline": [
        "tests/test_model_gateway.py",
        "tests/test_tools_provider.py",
        "tests/test_inference_loop.py",
        "tests/test_receipt_sync.py",
        "tests/test_chat_orchestrator.py",
    ],
    "api": ["tests/test_api.py"],
    "all": ["tests/"],
}


def run_command(command, description):
    """Run a command and handle errors."""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(command)}")
    print(f"{'='*60}")

    try:
        subprocess.run(command, check=True, capture_output=False, cwd=project_root)
        print(f"\n✅ {description} completed successfully!")
        return True
    except subprocess.CalledProcessError as e:
        print(f"\n❌ {description} failed with exit code {e.returncode}")
        return False


def check_environment():
    """Check if the environment is properly set up."""
    print("🔍 Checking environment...")

    # Check if virtual environment is activated
    if not hasattr(sys, 'real_prefix') and not (hasattr(sys, 'base_prefix') and sys.base_prefix != sys.prefix):
        print("⚠️  Warning: Virtual environment may not be activated")

    result = subprocess.run([sys.executable, "-m", "pytest", "--version"], capture_output=True)
    if result.returncode != 0:
        print("❌ pytest is not available. Install the test extra: pip install -e .[test]")
        return False
    print("✅ pytest is available")

    if not (project_root / "poschat").exists():
        print("❌ poschat package directory not found")
        return False

    print("✅ Environment check completed")
    return True


def run_suite(name, verbose=False, coverage=False):
    """Run one named group of test modules."""
    command = [sys.executable, "-m", "pytest", *SUITES[name]]

    if verbose:
        command.append("-v")
    if coverage:
        command.extend(["--cov=poschat", "--cov-report=term-missing"])
        if name == "all":
            command.extend(["--cov-report=html", "--cov-report=xml"])

    return run_command(command, f"{name.capitalize()} Tests")


def main():
    """Main function to parse arguments and run tests."""
    parser = argparse.ArgumentParser(
        description="Test Runner for poschat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tests/run_tests.py --unit
  python tests/run_tests.py --pipeline --verbose
  python tests/run_tests.py --all --coverage
        """
    )

    for name in ("unit", "pipeline", "api", "all"):
        parser.add_argument(f"--{name}", action="store_true", help=f"Run the {name} tests")

    parser.add_argument(
        "--coverage",
        action="store_true",
        help="Run tests with coverage reporting"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Run with verbose output"
    )

    parser.add_argument(
        "--check-env",
        action="store_true",
        help="Check environment setup only"
    )

    args = parser.parse_args()

    print("🧪 poschat Test Runner")
    print("=" * 60)

    # Check environment if requested
    if args.check_env:
        check_environment()
        return

    if not check_environment():
        print("❌ Environment check failed. Please fix the issues above.")
        sys.exit(1)

    selected = [name for name in ("unit", "pipeline", "api", "all") if getattr(args, name)]
    # If no specific tests specified, run everything
    if not selected:
        selected = ["all"]

    success_count = 0
    for name in selected:
        if run_suite(name, verbose=args.verbose, coverage=args.coverage):
            success_count += 1

    total = len(selected)
    print(f"\n{'='*60}")
    print("TEST RUN SUMMARY")
    print(f"{'='*60}")
    print(f"Suites run: {total}")
    print(f"Successful: {success_count}")
    print(f"Failed: {total - success_count}")

    if args.coverage and "all" in selected:
        print("\n📊 Coverage reports generated:")
        print("  - HTML report: htmlcov/index.html")
        print("  - XML report: coverage.xml")

    if success_count == total:
        print("\n🎉 All tests passed!")
        sys.exit(0)
    else:
        print(f"\n❌ {total - success_count} test suite(s) failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
