"""
cli.py
~~~~~~

Command line interface of DigitScanner.

Examples:
    Create a network, train it on the whole MNIST training set and save it:

        digitscanner --layers 784 30 10 --train --train_epochs 30 \\
            --fnnout models/fnn.txt

    Load it again and test it on the first 5000 test images:

        digitscanner --fnnin models/fnn.txt --test --test_imgnb 5000

    Serve it to the drawing client:

        digitscanner --fnnin models/fnn.txt --serve
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

from digitscanner.config import Settings, configure_logging
from digitscanner.exceptions import DigitScannerError
from digitscanner.scanner import DigitScanner

logger = logging.getLogger(__name__)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='digitscanner',
        description='Create, train and test feedforward neural networks '
                    'for handwritten digit recognition.'
    )

    network = parser.add_mutually_exclusive_group()
    network.add_argument('--layers', type=int, nargs='+', metavar='N',
                         help='node counts from input to output layer')
    network.add_argument('--fnnin', type=str,
                         help='load the network from this file')
    parser.add_argument('--fnnout', type=str,
                        help='save the network to this file when done')

    action = parser.add_mutually_exclusive_group()
    action.add_argument('--train', action='store_true',
                        help='train the network on MNIST training images')
    action.add_argument('--test', action='store_true',
                        help='test the network on MNIST test images')

    parser.add_argument('--mnist', type=str, default=settings.mnist_path,
                        help='directory holding the MNIST IDX files')
    parser.add_argument('--train_imgnb', type=int, default=60000)
    parser.add_argument('--train_imgskip', type=int, default=0)
    parser.add_argument('--train_epochs', type=int, default=30)
    parser.add_argument('--train_batch_len', type=int, default=10)
    parser.add_argument('--train_eta', type=float, default=0.5)
    parser.add_argument('--train_alpha', type=float, default=5.0)
    parser.add_argument('--test_imgnb', type=int, default=10000)
    parser.add_argument('--test_imgskip', type=int, default=0)

    parser.add_argument('--threads', type=int, default=settings.max_threads,
                        help='worker threads per training batch')
    parser.add_argument('--seed', type=int, default=None,
                        help='seed of the weight initialization')
    parser.add_argument('--time', action='store_true',
                        help='print the execution time')
    parser.add_argument('--serve', action='store_true',
                        help='serve the network through the REST API')
    return parser


def run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute the actions requested on the command line."""
    dgs = DigitScanner(max_threads=args.threads, seed=args.seed)
    if args.layers:
        dgs.set_layers(args.layers)
    elif args.fnnin:
        dgs.load(args.fnnin)
    elif args.train or args.test or args.fnnout or args.serve:
        dgs.set_layers(settings.default_layers)

    begin = time.perf_counter()
    if args.train:
        dgs.train(args.mnist, args.train_imgnb, args.train_imgskip,
                  args.train_epochs, args.train_batch_len,
                  args.train_eta, args.train_alpha)
    elif args.test:
        score = dgs.test(args.mnist, args.test_imgnb, args.test_imgskip)
        print(f"{score:g} %")
    if args.time:
        print(f"{time.perf_counter() - begin:.3f} s")

    if args.fnnout:
        dgs.save(args.fnnout)

    if args.serve:
        from digitscanner import api_server
        api_server.serve(dgs.network)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings.from_env()
    args = build_parser(settings).parse_args(argv)
    configure_logging(settings)

    try:
        return run(args, settings)
    except (DigitScannerError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
