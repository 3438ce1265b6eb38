import argparse, sys, os, json, logging, unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

def run_tests(k=None, start_dir="tests", verbosity=1):
    loader = unittest.TestLoader()
    suite = loader.discover(start_dir=start_dir, pattern="test*.py")
    if k:
        def _filter(s, pat):
            new = unittest.TestSuite()
            for t in s:
                if isinstance(t, unittest.TestSuite):
                    sub = _filter(t, pat)
                    if sub.countTestCases():
                        new.addTest(sub)
                else:
                    name = t.id()
                    if pat in name:
                        new.addTest(t)
            return new
        suite = _filter(suite, k)
    runner = unittest.TextTestRunner(verbosity=verbosity)
    res = runner.run(suite)
    return 0 if res.wasSuccessful() else 1

def _load_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)

def run_cycle(items_path, context_path=None, config_path=None, out=sys.stdout):
    from topdown.attention.attention_orchestrator import AttentionOrchestrator, AttentionConfig

    items = _load_json(items_path)
    context = _load_json(context_path) if context_path else None
    config = AttentionConfig.from_dict(_load_json(config_path)) if config_path else None

    orchestrator = AttentionOrchestrator(config)
    result = orchestrator.run_cycle(items, context)
    json.dump(result.to_dict(), out, indent=2)
    out.write("\n")
    return 0 if result.status != "error" else 1

def main(argv=None):
    ap = argparse.ArgumentParser()
    sp = ap.add_subparsers(dest="cmd", required=True)

    p_test = sp.add_parser("test")
    p_test.add_argument("-k", "--keyword", default=None)
    p_test.add_argument("-v", "--verbose", action="count", default=0)

    p_cycle = sp.add_parser("cycle")
    p_cycle.add_argument("--items", required=True, help="JSON list of work items")
    p_cycle.add_argument("--context", default=None, help="JSON object with goals / active_domains")
    p_cycle.add_argument("--config", default=None, help="JSON engine configuration")

    args = ap.parse_args(argv)

    if args.cmd == "test":
        verbosity = 1 + int(args.verbose)
        code = run_tests(k=args.keyword, start_dir="tests", verbosity=verbosity)
        sys.exit(code)
    elif args.cmd == "cycle":
        logging.basicConfig(level=logging.INFO)
        sys.exit(run_cycle(args.items, args.context, args.config))

if __name__ == "__main__":
    main()
